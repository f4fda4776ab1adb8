"""Command line tool for running the kude-controller reconcilers locally."""

import argparse
import asyncio
import logging
import sys
import traceback

from kude_controller.exceptions import KudeException
from . import run, validate

_LOGGER = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

ACTIONS = (run.RunAction, validate.ValidateAction)


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kude-controller",
        description="Reconcile git backed manifest bundles against a cluster.",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log to stderr at this level, logging is disabled if unset",
    )
    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)
    for action in ACTIONS:
        action.register(subparsers)
    return parser


def _setup_logging(level: str | None) -> None:
    if not level:
        return
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)
    # GitPython logs every git invocation at debug level.
    logging.getLogger("git").setLevel(max(logging.INFO, logging.getLevelName(level)))


def main(argv: list[str] | None = None) -> None:
    """kude-controller command line tool main entry point."""
    args = _make_parser().parse_args(argv)
    _setup_logging(args.log_level)

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except KudeException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print("kude-controller error:", err, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
