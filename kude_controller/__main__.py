"""Entry point for `python -m kude_controller`."""

from kude_controller.tool.kude_controller import main

if __name__ == "__main__":
    main()
