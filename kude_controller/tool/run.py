"""kude-controller run action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import pathlib
import shlex
from typing import Any, cast

from kude_controller.bundle_controller import BundleControllerConfig
from kude_controller.conditions import AVAILABLE, UP_TO_DATE, find_condition
from kude_controller.dispatch import QueueConfig
from kude_controller.manager import LoadOptions, Manager, ManagerConfig, load_into_store
from kude_controller.manifest import (
    BUNDLE_KIND,
    RUN_RECORD_KIND,
    TRACKED_REPOSITORY_KIND,
    DEFAULT_RUNS_HISTORY_LIMIT,
    ConditionStatus,
    Resource,
    RunRecord,
    TrackedRepository,
)
from kude_controller.repository_controller import TrackedRepositoryControllerConfig
from kude_controller.store import Store
from kude_controller.task import task_service_context

from .format import FORMATTERS, TableFormatter

_LOGGER = logging.getLogger(__name__)

STATUS_COLUMNS = ["kind", "namespace", "name", "ready", "revision", "reason"]


def _status_objects(store: Store, show_runs: bool) -> list[Resource]:
    kinds = [TRACKED_REPOSITORY_KIND, BUNDLE_KIND]
    if show_runs:
        kinds.append(RUN_RECORD_KIND)
    return [obj for kind in kinds for obj in store.list_objects(kind)]


def status_documents(store: Store, show_runs: bool = False) -> list[dict[str, Any]]:
    """Return the resources in the store as documents for display."""
    return [obj.to_doc() for obj in _status_objects(store, show_runs)]


def _run_ready(run: RunRecord) -> ConditionStatus:
    if not run.status.completed:
        return ConditionStatus.UNKNOWN
    if run.status.exit_code == 0:
        return ConditionStatus.TRUE
    return ConditionStatus.FALSE


def _status_row(obj: Resource) -> dict[str, Any]:
    row: dict[str, Any] = {
        "kind": obj.kind,
        "namespace": obj.namespace,
        "name": obj.name,
    }
    if isinstance(obj, RunRecord):
        row["ready"] = _run_ready(obj)
        row["revision"] = obj.spec.commit_sha[:12]
        row["reason"] = obj.status.error or ""
        return row
    if isinstance(obj, TrackedRepository):
        condition = find_condition(obj, AVAILABLE)
        row["revision"] = obj.status.last_pulled_sha[:12]
    else:
        condition = find_condition(obj, UP_TO_DATE)
        row["revision"] = ""
    row["ready"] = condition.status if condition else ConditionStatus.UNKNOWN
    row["reason"] = condition.reason if condition else ""
    return row


def status_rows(store: Store, show_runs: bool = False) -> list[dict[str, Any]]:
    """Return a summary row for each resource in the store."""
    return [_status_row(obj) for obj in _status_objects(store, show_runs)]


class RunAction:
    """kude-controller run action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "run",
                help="Reconcile TrackedRepository and Bundle manifests",
                description=(
                    "Load TrackedRepository and Bundle manifests into an in memory "
                    "store and reconcile them, printing their status on exit."
                ),
            ),
        )
        args.add_argument(
            "--path",
            help="File or directory containing TrackedRepository and Bundle manifests",
            type=pathlib.Path,
            required=True,
        )
        args.add_argument(
            "--work-dir",
            help="Root directory for repository mirrors",
            type=pathlib.Path,
            required=True,
        )
        args.add_argument(
            "--apply-command",
            help="Command used to apply manifests, `apply` and the files are appended",
            default="kubectl",
        )
        args.add_argument(
            "--duration",
            help="Seconds to run before printing the status, runs forever if unset",
            type=float,
            default=None,
        )
        args.add_argument(
            "--runs-history-limit",
            help="Default number of RunRecords retained per Bundle",
            type=int,
            default=DEFAULT_RUNS_HISTORY_LIMIT,
        )
        args.add_argument(
            "--max-concurrent-reconciles",
            help="Number of resources of each kind reconciled concurrently",
            type=int,
            default=QueueConfig.max_concurrent_reconciles,
        )
        args.add_argument(
            "--show-runs",
            help="Include RunRecords in the printed status",
            action="store_true",
        )
        args.add_argument(
            "--output",
            "-o",
            choices=["yaml", "json", "table"],
            default="yaml",
            help="Output format of the status printed on exit",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        path: pathlib.Path,
        work_dir: pathlib.Path,
        apply_command: str,
        duration: float | None,
        runs_history_limit: int,
        max_concurrent_reconciles: int,
        show_runs: bool,
        output: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        config = ManagerConfig(
            repository=TrackedRepositoryControllerConfig(work_dir=work_dir),
            bundle=BundleControllerConfig(
                apply_command=shlex.split(apply_command),
                default_runs_history_limit=runs_history_limit,
            ),
            queue=QueueConfig(max_concurrent_reconciles=max_concurrent_reconciles),
        )
        work_dir.mkdir(parents=True, exist_ok=True)
        with task_service_context() as task_service:
            manager = Manager(config, task_service=task_service)
            try:
                await load_into_store(manager.store, LoadOptions(path=path))
                await manager.run(duration)
            finally:
                await task_service.cancel_all()

        if output == "table":
            TableFormatter(STATUS_COLUMNS).print(status_rows(manager.store, show_runs))
            return
        FORMATTERS[output]().print(status_documents(manager.store, show_runs))
