"""Resource loader for kude-controller.

The loader reads TrackedRepository and Bundle manifests from the filesystem so
they can be added to the store before the manager starts. Documents of other
kinds (plain Kubernetes objects living next to them, for example) are skipped.
"""

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncGenerator

import aiofiles
import yaml

from kude_controller.exceptions import InputException, KudeException
from kude_controller.manifest import (
    API_GROUP,
    BUNDLE_KIND,
    TRACKED_REPOSITORY_KIND,
    Resource,
    parse_raw_obj,
)
from kude_controller.store import Store

__all__ = ["ResourceLoader", "LoadOptions", "load_into_store"]

_LOGGER = logging.getLogger(__name__)

SUPPORTED_KINDS = {TRACKED_REPOSITORY_KIND, BUNDLE_KIND}
SUFFIXES = (".yaml", ".yml")
IGNORED_DIRS = {".git"}


@dataclass
class LoadOptions:
    """Where to look for manifests."""

    path: Path
    """A manifest file, or a directory of them."""

    recursive: bool = True
    """Descend into subdirectories of a directory path."""

    def __post_init__(self) -> None:
        self.path = Path(self.path).expanduser().resolve()


def _is_supported(doc: Any) -> bool:
    if not isinstance(doc, dict):
        return False
    api_version = doc.get("apiVersion")
    return (
        isinstance(api_version, str)
        and api_version.startswith(API_GROUP)
        and doc.get("kind") in SUPPORTED_KINDS
    )


def manifest_files(path: Path, recursive: bool = True) -> Iterator[Path]:
    """Yield the manifest files below a directory in sorted order."""
    for entry in sorted(path.iterdir()):
        if entry.is_dir():
            if recursive and entry.name not in IGNORED_DIRS:
                yield from manifest_files(entry, recursive)
        elif entry.suffix.lower() in SUFFIXES:
            yield entry


class ResourceLoader:
    """Parses TrackedRepository and Bundle resources from manifest files."""

    async def load(self, options: LoadOptions) -> AsyncGenerator[Resource, None]:
        """Yield the resources found at the path of the options.

        Raises:
            KudeException: If the path cannot be read.
            InputException: If a supported document is malformed.
        """
        path = options.path
        _LOGGER.info("Loading resources from %s", path)
        if path.is_file():
            files: Iterator[Path] = iter([path])
        elif path.is_dir():
            files = manifest_files(path, options.recursive)
        elif not path.exists():
            raise KudeException(f"Path does not exist: {path}")
        else:
            raise KudeException(f"Path is not a file or directory: {path}")

        for file in files:
            for resource in self.parse(file, await self._read(file)):
                yield resource

    async def _read(self, path: Path) -> str:
        try:
            async with aiofiles.open(str(path), encoding="utf-8") as manifest:
                return await manifest.read()
        except OSError as err:
            raise KudeException(f"Failed to read file {path}: {err}") from err

    def parse(self, path: Path, content: str) -> list[Resource]:
        """Parse the supported documents in the content of a manifest file."""
        try:
            docs = list(yaml.safe_load_all(content))
        except yaml.YAMLError as err:
            raise InputException(f"Invalid YAML in file {path}: {err}") from err

        resources: list[Resource] = []
        for index, doc in enumerate(docs):
            if not _is_supported(doc):
                _LOGGER.debug("Skipping document %d of %s", index, path)
                continue
            try:
                resources.append(parse_raw_obj(doc))
            except InputException as err:
                raise InputException(f"Error in file {path}: {err}") from err
        _LOGGER.debug("Parsed %d resources from %s", len(resources), path)
        return resources


async def load_into_store(store: Store, options: LoadOptions) -> list[Resource]:
    """Load all resources from the path and add them to the store."""
    resources = [resource async for resource in ResourceLoader().load(options)]
    for resource in resources:
        store.create(resource)
    _LOGGER.info("Loaded %d resources", len(resources))
    return resources
