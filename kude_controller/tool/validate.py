"""Command line tool for validating TrackedRepository and Bundle manifests."""

import logging
from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import pathlib
from typing import cast

from kude_controller.duration import parse_interval
from kude_controller.exceptions import InputException
from kude_controller.manager import LoadOptions, ResourceLoader
from kude_controller.manifest import Bundle, Resource, TrackedRepository

_LOGGER = logging.getLogger(__name__)

FAIL = "[VALIDATE FAIL]"
OK = "[VALIDATE OK]"


def validate_resource(resource: Resource) -> list[str]:
    """Return the problems that would stop a resource from reconciling."""
    errors = []
    if isinstance(resource, TrackedRepository):
        try:
            parse_interval(resource.spec.polling_interval)
        except InputException as err:
            errors.append(f"invalid pollingInterval: {err}")
    elif isinstance(resource, Bundle):
        try:
            parse_interval(resource.spec.drift_detection_interval)
        except InputException as err:
            errors.append(f"invalid driftDetectionInterval: {err}")
        try:
            resource.spec.source_repository_id()
        except InputException as err:
            errors.append(str(err))
        if any(not pattern.strip() for pattern in resource.spec.files):
            errors.append("files must not contain empty entries")
    return errors


class ValidateAction:
    """kude-controller validate action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "validate",
                help="Validate TrackedRepository and Bundle manifests",
                description="Parse manifests and report specs that cannot reconcile.",
            ),
        )
        args.add_argument(
            "--path",
            help="File or directory containing TrackedRepository and Bundle manifests",
            type=pathlib.Path,
            required=True,
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        path: pathlib.Path,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        loader = ResourceLoader()
        resources = [resource async for resource in loader.load(LoadOptions(path))]

        errors = [
            f"{resource.resource_id}: {error}"
            for resource in resources
            for error in validate_resource(resource)
        ]
        if errors:
            for error in errors:
                print(f"{FAIL}: {error}")
            raise InputException(f"{len(errors)} problems found in {path}")
        print(f"{OK}: {len(resources)} resources")
