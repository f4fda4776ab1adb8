"""
.. include:: ../README.md
"""

__all__ = [
    "manifest",
    "conditions",
    "store",
    "dispatch",
    "repository_controller",
    "bundle_controller",
    "manager",
    "exceptions",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
