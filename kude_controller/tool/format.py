"""Output formatting for the command line tool."""

from abc import ABC, abstractmethod
import json
import sys
from typing import Any, Generator, TextIO

import yaml

__all__ = [
    "TableFormatter",
    "DocumentFormatter",
    "YamlFormatter",
    "JsonFormatter",
    "FORMATTERS",
]

PADDING = 3


class _BlockStyleDumper(yaml.SafeDumper):
    """Dumps multi-line strings such as command output as literal blocks."""


def _represent_str(dumper: yaml.SafeDumper, data: str) -> yaml.ScalarNode:
    style = "|" if "\n" in data else None
    return dumper.represent_scalar("tag:yaml.org,2002:str", data, style=style)


_BlockStyleDumper.add_representer(str, _represent_str)


def _column_widths(rows: list[list[str]]) -> list[int]:
    widths = [0] * len(rows[0])
    for row in rows:
        for i, value in enumerate(row):
            widths[i] = max(widths[i], len(value))
    return widths


class TableFormatter:
    """Prints rows of values in aligned columns with an upper case header."""

    def __init__(self, keys: list[str]) -> None:
        self._keys = keys

    def format(self, data: list[dict[str, Any]]) -> Generator[str, None, None]:
        """Format the rows, yielding one line per row."""
        if not data:
            return
        rows = [[key.upper() for key in self._keys]]
        rows.extend([str(row.get(key, "")) for key in self._keys] for row in data)
        widths = _column_widths(rows)
        for row in rows:
            line = "".join(
                value.ljust(width + PADDING) for value, width in zip(row, widths)
            )
            yield line.rstrip()

    def print(self, data: list[dict[str, Any]], file: TextIO | None = None) -> None:
        file = file or sys.stdout
        for line in self.format(data):
            print(line, file=file)


class DocumentFormatter(ABC):
    """Prints a list of resource documents."""

    @abstractmethod
    def dumps(self, docs: list[dict[str, Any]]) -> str:
        """Render the documents as a string."""

    def print(self, docs: list[dict[str, Any]], file: TextIO | None = None) -> None:
        file = file or sys.stdout
        print(self.dumps(docs), end="", file=file)


class YamlFormatter(DocumentFormatter):
    """Prints each document as a separate YAML document."""

    def dumps(self, docs: list[dict[str, Any]]) -> str:
        return yaml.dump_all(
            docs, Dumper=_BlockStyleDumper, sort_keys=False, explicit_start=True
        )


class JsonFormatter(DocumentFormatter):
    """Prints the documents as a JSON list."""

    def dumps(self, docs: list[dict[str, Any]]) -> str:
        return json.dumps(docs, indent=4, sort_keys=False) + "\n"


FORMATTERS: dict[str, type[DocumentFormatter]] = {
    "yaml": YamlFormatter,
    "json": JsonFormatter,
}
