"""
Bundle reconciler.

A Bundle is up to date when its most recent RunRecord was created for the
commit currently pulled by its TrackedRepository and exited with code zero.
Otherwise the apply command is run again from the repository mirror and a new
RunRecord captures its output. Old RunRecords are pruned down to the history
limit, oldest first.

Conditions:
    - UpToDate: True when the last run matches the repository commit and passed.
    - Degraded: True while the resource is being deleted.
"""

from dataclasses import dataclass, field
import logging
from pathlib import Path
import shutil
import uuid

from kude_controller.command import Command
from kude_controller.conditions import (
    AVAILABLE,
    DEGRADED,
    UP_TO_DATE,
    is_condition_true,
)
from kude_controller.context import trace_context
from kude_controller.dispatch import Result
from kude_controller.duration import parse_interval
from kude_controller.events import EventRecorder
from kude_controller.exceptions import (
    CommandException,
    InputException,
    InvalidDurationError,
    StoreException,
)
from kude_controller.manifest import (
    BUNDLE_KIND,
    DEFAULT_RUNS_HISTORY_LIMIT,
    RUN_RECORD_KIND,
    Bundle,
    ConditionStatus,
    NamedResource,
    ObjectMeta,
    OwnerReference,
    RunRecord,
    RunRecordSpec,
    RunRecordStatus,
    TrackedRepository,
)
from kude_controller.reconciler import (
    DELETED_MESSAGE,
    DELETED_REASON,
    ResourceWriter,
)
from kude_controller.store import Store

_LOGGER = logging.getLogger(__name__)

FINALIZER = "bundles.kude.kfirs.com/finalizer"
OWNER_UID_LABEL = "bundles.kude.kfirs.com/ownerUID"

TRUE = ConditionStatus.TRUE
FALSE = ConditionStatus.FALSE
UNKNOWN = ConditionStatus.UNKNOWN

UP_TO_DATE_REASON = "UpToDate"
FAILED_REASON = "Failed"


@dataclass
class BundleControllerConfig:
    """Configuration for the BundleReconciler."""

    apply_command: list[str] = field(default_factory=lambda: ["kubectl"])
    """Command prefix, `apply` and the bundle arguments are appended."""

    default_runs_history_limit: int = DEFAULT_RUNS_HISTORY_LIMIT
    """Number of RunRecords retained for bundles that do not set a limit."""


class BundleReconciler:
    """Reconciler for Bundle resources."""

    def __init__(
        self,
        store: Store,
        recorder: EventRecorder,
        config: BundleControllerConfig | None = None,
    ) -> None:
        """Initialize BundleReconciler."""
        self._store = store
        self._recorder = recorder
        self._writer = ResourceWriter(store, recorder)
        self._config = config or BundleControllerConfig()

    async def reconcile(self, resource_id: NamedResource) -> Result:
        """Run a single reconciliation pass for the Bundle."""
        with trace_context(str(resource_id)):
            obj = self._store.get_object(resource_id, Bundle)
            if obj is None:
                _LOGGER.debug("%s no longer exists", resource_id)
                return Result()
            return await self._reconcile(obj)

    def runs_for(self, obj: Bundle) -> list[RunRecord]:
        """Return the RunRecords of the bundle, newest first."""
        runs = [
            run
            for run in self._store.list_objects(
                RUN_RECORD_KIND,
                namespace=obj.namespace,
                labels={OWNER_UID_LABEL: obj.metadata.uid},
            )
            if isinstance(run, RunRecord)
        ]
        runs.sort(
            key=lambda run: (run.metadata.creation_timestamp, run.name),
            reverse=True,
        )
        return runs

    def _history_limit(self, obj: Bundle) -> int:
        if obj.spec.runs_history_limit > 0:
            return obj.spec.runs_history_limit
        return self._config.default_runs_history_limit

    async def _reconcile(self, obj: Bundle) -> Result:
        if self._writer.ensure_conditions(obj, {UP_TO_DATE: UNKNOWN, DEGRADED: FALSE}):
            return Result(requeue=True)

        if obj.is_deleting:
            return self._finalize(obj)

        if obj.add_finalizer(FINALIZER):
            self._writer.update(obj)
            return Result(requeue=True)

        try:
            interval = parse_interval(obj.spec.drift_detection_interval)
        except InvalidDurationError as err:
            message = f"Invalid drift detection interval: {err}"
            self._recorder.warning(
                obj.resource_id, "InvalidDriftDetectionInterval", message
            )
            self._writer.set_condition(
                obj, UP_TO_DATE, UNKNOWN, "InvalidDriftDetectionInterval", message
            )
            return Result()

        runs = self._prune_runs(obj, self._history_limit(obj))
        last_run = runs[0] if runs else None

        try:
            repository_id = obj.spec.source_repository_id()
        except InputException as err:
            self._recorder.warning(obj.resource_id, "InvalidSourceRepository", str(err))
            self._writer.set_condition(
                obj, UP_TO_DATE, UNKNOWN, "InvalidSourceRepository", str(err)
            )
            return Result()

        repository = self._store.get_object(repository_id, TrackedRepository)
        if repository is None:
            message = f"TrackedRepository '{repository_id.namespaced_name}' not found"
            self._recorder.warning(obj.resource_id, "SourceNotFound", message)
            self._writer.set_condition(
                obj, UP_TO_DATE, UNKNOWN, "SourceNotFound", message
            )
            return Result(requeue_after=interval)

        if not is_condition_true(repository, AVAILABLE):
            message = (
                f"TrackedRepository '{repository_id.namespaced_name}' is not available"
            )
            self._recorder.warning(obj.resource_id, "SourceNotReady", message)
            self._writer.set_condition(
                obj, UP_TO_DATE, UNKNOWN, "SourceNotReady", message
            )
            return Result(requeue_after=interval)

        sha = repository.status.last_pulled_sha
        if last_run is not None and last_run.spec.commit_sha == sha:
            if last_run.status.exit_code == 0:
                self._writer.set_condition(
                    obj,
                    UP_TO_DATE,
                    TRUE,
                    UP_TO_DATE_REASON,
                    "Last run matches current repository SHA",
                )
                return Result(requeue_after=interval)
            changed = self._writer.set_condition(
                obj, UP_TO_DATE, FALSE, FAILED_REASON, "Last run failed, retrying"
            )
        elif last_run is not None:
            changed = self._writer.set_condition(
                obj,
                UP_TO_DATE,
                FALSE,
                "OutOfDate",
                "Last run does not match current repository SHA",
            )
        else:
            changed = self._writer.set_condition(
                obj, UP_TO_DATE, FALSE, "NotApplied", "Bundle has no runs yet"
            )
        if changed:
            return Result(requeue=True)

        with trace_context("apply"):
            await self._apply(obj, repository, sha)
        return Result(requeue_after=interval)

    def _prune_runs(self, obj: Bundle, keep: int) -> list[RunRecord]:
        """Delete RunRecords beyond the newest `keep`, returning the rest."""
        runs = self.runs_for(obj)
        limit = max(keep, 0)
        for run in reversed(runs[limit:]):
            _LOGGER.debug("Deleting old run %s of %s", run.name, obj.resource_id)
            try:
                self._store.delete(run.resource_id)
            except StoreException as err:
                self._recorder.warning(
                    obj.resource_id,
                    "FailedDeletingRun",
                    f"Failed deleting run {run.name}: {err}",
                )
                raise
        return runs[:limit]

    def _new_run(
        self, obj: Bundle, repository: TrackedRepository, sha: str
    ) -> RunRecord:
        args = [
            *self._config.apply_command,
            "apply",
            *obj.spec.args,
            "-f",
            *obj.spec.files,
        ]
        return RunRecord(
            metadata=ObjectMeta(
                name=str(uuid.uuid4()),
                namespace=obj.namespace,
                labels={OWNER_UID_LABEL: obj.metadata.uid},
                owner_references=[
                    OwnerReference(
                        kind=BUNDLE_KIND,
                        name=obj.name,
                        uid=obj.metadata.uid,
                        controller=True,
                    )
                ],
            ),
            spec=RunRecordSpec(
                commit_sha=sha,
                directory=repository.status.work_directory,
                command=shutil.which(args[0]) or args[0],
                args=args,
            ),
        )

    async def _apply(
        self, obj: Bundle, repository: TrackedRepository, sha: str
    ) -> None:
        """Record and run the apply command, then report the outcome."""
        self._prune_runs(obj, self._history_limit(obj) - 1)
        run = self._new_run(obj, repository, sha)
        try:
            self._store.create(run)
        except StoreException as err:
            self._recorder.warning(
                obj.resource_id, "FailedCreatingRun", f"Failed creating run: {err}"
            )
            raise

        command = Command(run.spec.args, cwd=Path(run.spec.directory))
        _LOGGER.info("Applying %s at %s: %s", obj.resource_id, sha, command)
        try:
            result = await command.run()
        except CommandException as err:
            run.status = RunRecordStatus(
                exit_code=-1, output=command.header, error=str(err)
            )
            self._writer.update_status(run, event_target=obj)
            message = f"Failed starting run {run.name}: {err}"
            self._recorder.warning(obj.resource_id, "FailedStartingRun", message)
            self._writer.set_condition(obj, UP_TO_DATE, FALSE, FAILED_REASON, message)
            return

        error = None
        if not result.success:
            error = f"command failed: exit status {result.exit_code}"
        run.status = RunRecordStatus(
            exit_code=result.exit_code, output=result.output, error=error
        )
        self._writer.update_status(run, event_target=obj)

        if result.success:
            self._recorder.normal(obj.resource_id, "RunSucceeded", "Successful run")
            self._writer.set_condition(
                obj, UP_TO_DATE, TRUE, UP_TO_DATE_REASON, "Successful run"
            )
            return
        message = f"Run {run.name} failed with exit code {result.exit_code}"
        self._recorder.warning(obj.resource_id, "RunFailed", message)
        self._writer.set_condition(obj, UP_TO_DATE, FALSE, FAILED_REASON, message)

    def _finalize(self, obj: Bundle) -> Result:
        """Remove the finalizer, owned RunRecords are garbage collected."""
        if not obj.has_finalizer(FINALIZER):
            return Result()
        if self._writer.set_condition(
            obj, DEGRADED, TRUE, DELETED_REASON, DELETED_MESSAGE
        ):
            return Result(requeue=True)
        if self._writer.set_condition(
            obj, UP_TO_DATE, UNKNOWN, DELETED_REASON, DELETED_MESSAGE
        ):
            return Result(requeue=True)
        obj.remove_finalizer(FINALIZER)
        self._writer.update(obj)
        _LOGGER.info("Finalized %s", obj.resource_id)
        return Result()
