"""Representation of the resources reconciled by kude-controller.

Resources are modeled after Kubernetes custom resources: each has an `ObjectMeta`
owned by the store, a user supplied `spec` and a system owned `status`. Resources
may be parsed from raw YAML documents and serialized back for display.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
import logging
import re
from typing import Any, ClassVar

from mashumaro import DataClassDictMixin, field_options
from mashumaro.codecs.yaml import yaml_encode
from mashumaro.config import BaseConfig

from .exceptions import InputException

__all__ = [
    "NamedResource",
    "ConditionStatus",
    "Condition",
    "OwnerReference",
    "ObjectMeta",
    "Resource",
    "TrackedRepository",
    "TrackedRepositorySpec",
    "TrackedRepositoryStatus",
    "Bundle",
    "BundleSpec",
    "BundleStatus",
    "RunRecord",
    "RunRecordSpec",
    "RunRecordStatus",
    "parse_raw_obj",
]

_LOGGER = logging.getLogger(__name__)


API_GROUP = "kude.kfirs.com"
API_VERSION = f"{API_GROUP}/v1alpha1"
TRACKED_REPOSITORY_KIND = "TrackedRepository"
BUNDLE_KIND = "Bundle"
RUN_RECORD_KIND = "RunRecord"
DEFAULT_RUNS_HISTORY_LIMIT = 10

_QUALIFIED_NAME = re.compile(r"^[^/]+/[^/]+$")


def _check_version(doc: dict[str, Any]) -> None:
    """Assert that the resource belongs to our API group."""
    if not (api_version := doc.get("apiVersion")):
        raise InputException(f"Invalid object missing apiVersion: {doc}")
    if not api_version.startswith(API_GROUP):
        raise InputException(f"Invalid object expected '{API_GROUP}': {doc}")


def _spec_section(kind: str, doc: dict[str, Any]) -> dict[str, Any]:
    """Return the spec of the document, which must be a mapping."""
    if not (spec := doc.get("spec")):
        raise InputException(f"Invalid {kind} missing spec: {doc}")
    if not isinstance(spec, dict):
        raise InputException(f"Invalid {kind} spec must be a mapping: {doc}")
    return spec


def _spec_str(kind: str, doc: dict[str, Any], spec: dict[str, Any], key: str) -> str:
    """Return a required string field of the spec."""
    if not (value := spec.get(key)):
        raise InputException(f"Invalid {kind} missing spec.{key}: {doc}")
    if not isinstance(value, str):
        raise InputException(f"Invalid {kind} spec.{key} must be a string: {doc}")
    return value


def _spec_str_list(
    kind: str, doc: dict[str, Any], spec: dict[str, Any], key: str
) -> list[str]:
    """Return an optional list of strings field of the spec."""
    values = spec.get(key) or []
    if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
        raise InputException(
            f"Invalid {kind} spec.{key} must be a list of strings: {doc}"
        )
    return values


@dataclass
class BaseManifest(DataClassDictMixin):
    """Base class for all manifest objects."""

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass(frozen=True, order=True)
class NamedResource:
    """Identifier for a resource."""

    kind: str
    namespace: str | None
    name: str

    @property
    def namespaced_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    def __str__(self) -> str:
        """Return the kind and namespaced name concatenated as an id."""
        return f"{self.kind}/{self.namespaced_name}"


class ConditionStatus(StrEnum):
    """Status of a condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


@dataclass
class Condition(BaseManifest):
    """Typed, timestamped observation of one aspect of a resource's state."""

    type: str
    """Unique key of the condition within a resource."""

    status: ConditionStatus
    """One of True, False or Unknown."""

    reason: str
    """Short machine readable token explaining the status."""

    message: str = ""
    """Human readable details."""

    observed_generation: int = field(
        metadata=field_options(alias="observedGeneration"), default=0
    )
    """The resource generation the condition was computed from."""

    last_transition_time: datetime | None = field(
        metadata=field_options(alias="lastTransitionTime"), default=None
    )
    """Last time the status changed."""


@dataclass
class OwnerReference(BaseManifest):
    """Reference from a dependent object to the object that owns it."""

    kind: str
    name: str
    uid: str
    api_version: str = field(
        metadata=field_options(alias="apiVersion"), default=API_VERSION
    )
    controller: bool = False


@dataclass
class ObjectMeta(BaseManifest):
    """Metadata common to all resources, maintained by the store."""

    name: str
    namespace: str
    uid: str = ""
    generation: int = 0
    resource_version: str = field(
        metadata=field_options(alias="resourceVersion"), default=""
    )
    creation_timestamp: datetime | None = field(
        metadata=field_options(alias="creationTimestamp"), default=None
    )
    deletion_timestamp: datetime | None = field(
        metadata=field_options(alias="deletionTimestamp"), default=None
    )
    finalizers: list[str] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)
    owner_references: list[OwnerReference] = field(
        metadata=field_options(alias="ownerReferences"), default_factory=list
    )

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ObjectMeta":
        """Parse user supplied metadata, ignoring store owned fields."""
        if not (metadata := doc.get("metadata")):
            raise InputException(f"Invalid object missing metadata: {doc}")
        if not (name := metadata.get("name")):
            raise InputException(f"Invalid object missing metadata.name: {doc}")
        if not (namespace := metadata.get("namespace")):
            raise InputException(f"Invalid object missing metadata.namespace: {doc}")
        return cls(
            name=name,
            namespace=namespace,
            labels=dict(metadata.get("labels") or {}),
        )


@dataclass
class Resource(BaseManifest):
    """Base class for all resources kept in the store."""

    kind: ClassVar[str]
    """The kind of the object."""

    metadata: ObjectMeta

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def resource_id(self) -> NamedResource:
        """Return the identifier of this resource."""
        return NamedResource(self.kind, self.metadata.namespace, self.metadata.name)

    @property
    def namespaced_name(self) -> str:
        """Return the namespace and name concatenated as an id."""
        return f"{self.metadata.namespace}/{self.metadata.name}"

    @property
    def is_deleting(self) -> bool:
        """Return True if the resource has been marked for deletion."""
        return self.metadata.deletion_timestamp is not None

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in self.metadata.finalizers

    def add_finalizer(self, finalizer: str) -> bool:
        """Add the finalizer, returning True if the object was modified."""
        if finalizer in self.metadata.finalizers:
            return False
        self.metadata.finalizers.append(finalizer)
        return True

    def remove_finalizer(self, finalizer: str) -> bool:
        """Remove the finalizer, returning True if the object was modified."""
        if finalizer not in self.metadata.finalizers:
            return False
        self.metadata.finalizers = [
            f for f in self.metadata.finalizers if f != finalizer
        ]
        return True

    def to_doc(self) -> dict[str, Any]:
        """Return the resource as a raw document."""
        return {
            "apiVersion": API_VERSION,
            "kind": self.kind,
            **self.to_dict(),
        }

    def yaml(self) -> str:
        """Return a YAML string representation of the resource."""
        return yaml_encode(self.to_doc(), dict[str, Any])  # type: ignore[return-value]


@dataclass
class TrackedRepositorySpec(BaseManifest):
    """Desired state of a tracked repository."""

    url: str
    """URL of the remote git repository."""

    ref: str
    """Branch of the repository to mirror."""

    polling_interval: str = field(metadata=field_options(alias="pollingInterval"))
    """How often the remote is polled for new commits (e.g. `5m`)."""

    @property
    def branch(self) -> str:
        """Return the short branch name of the ref."""
        return self.ref.removeprefix("refs/heads/")


@dataclass
class TrackedRepositoryStatus(BaseManifest):
    """Observed state of a tracked repository."""

    last_pulled_sha: str = field(
        metadata=field_options(alias="lastPulledSHA"), default=""
    )
    """Commit of the last successful pull, empty if never cloned."""

    work_directory: str = field(
        metadata=field_options(alias="workDirectory"), default=""
    )
    """Local directory holding the mirror."""

    conditions: list[Condition] = field(default_factory=list)


@dataclass
class TrackedRepository(Resource):
    """A remote git repository mirrored into a local working tree."""

    kind: ClassVar[str] = TRACKED_REPOSITORY_KIND

    spec: TrackedRepositorySpec
    status: TrackedRepositoryStatus = field(default_factory=TrackedRepositoryStatus)

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "TrackedRepository":
        """Parse a TrackedRepository from a raw document."""
        _check_version(doc)
        metadata = ObjectMeta.parse_doc(doc)
        spec = _spec_section(cls.kind, doc)
        return cls(
            metadata=metadata,
            spec=TrackedRepositorySpec(
                url=_spec_str(cls.kind, doc, spec, "url"),
                ref=_spec_str(cls.kind, doc, spec, "ref"),
                polling_interval=_spec_str(cls.kind, doc, spec, "pollingInterval"),
            ),
        )


@dataclass
class BundleSpec(BaseManifest):
    """Desired state of a bundle of manifests."""

    files: list[str]
    """Ordered list of file globs passed to the apply command."""

    source_repository: str = field(metadata=field_options(alias="sourceRepository"))
    """The `namespace/name` of the source TrackedRepository."""

    drift_detection_interval: str = field(
        metadata=field_options(alias="driftDetectionInterval")
    )
    """How often drift is checked and corrected."""

    args: list[str] = field(default_factory=list)
    """Extra arguments for the apply command."""

    runs_history_limit: int = field(
        metadata=field_options(alias="runsHistoryLimit"), default=0
    )
    """Number of run records to retain."""

    def source_repository_id(self) -> NamedResource:
        """Return the identifier of the source repository.

        Raises:
            InputException: If the reference is not of the form `namespace/name`.
        """
        if not _QUALIFIED_NAME.match(self.source_repository):
            raise InputException(
                f"Invalid source repository '{self.source_repository}', "
                "expected 'namespace/name'"
            )
        namespace, name = self.source_repository.split("/", 1)
        return NamedResource(TRACKED_REPOSITORY_KIND, namespace, name)


@dataclass
class BundleStatus(BaseManifest):
    """Observed state of a bundle."""

    conditions: list[Condition] = field(default_factory=list)


@dataclass
class Bundle(Resource):
    """A set of manifest files kept applied from one TrackedRepository."""

    kind: ClassVar[str] = BUNDLE_KIND

    spec: BundleSpec
    status: BundleStatus = field(default_factory=BundleStatus)

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Bundle":
        """Parse a Bundle from a raw document."""
        _check_version(doc)
        metadata = ObjectMeta.parse_doc(doc)
        spec = _spec_section(cls.kind, doc)
        if not (files := _spec_str_list(cls.kind, doc, spec, "files")):
            raise InputException(f"Invalid {cls.kind} missing spec.files: {doc}")
        runs_history_limit = spec.get("runsHistoryLimit", 0)
        if not isinstance(runs_history_limit, int) or isinstance(
            runs_history_limit, bool
        ):
            raise InputException(
                f"Invalid {cls.kind} spec.runsHistoryLimit must be an integer: {doc}"
            )
        return cls(
            metadata=metadata,
            spec=BundleSpec(
                files=list(files),
                args=list(_spec_str_list(cls.kind, doc, spec, "args")),
                source_repository=_spec_str(cls.kind, doc, spec, "sourceRepository"),
                drift_detection_interval=_spec_str(
                    cls.kind, doc, spec, "driftDetectionInterval"
                ),
                runs_history_limit=runs_history_limit,
            ),
        )


@dataclass
class RunRecordSpec(BaseManifest):
    """Inputs of one apply invocation, written once at creation."""

    commit_sha: str = field(metadata=field_options(alias="commitSHA"))
    """The commit of the source repository the command ran for."""

    directory: str
    """Working directory of the command."""

    command: str
    """Executable that was run (e.g. `kubectl`)."""

    args: list[str] = field(default_factory=list)
    """Full argument vector, including the executable."""


@dataclass
class RunRecordStatus(BaseManifest):
    """Outcome of one apply invocation, written once it completes."""

    exit_code: int | None = field(
        metadata=field_options(alias="exitCode"), default=None
    )
    output: str = ""
    error: str | None = None

    @property
    def completed(self) -> bool:
        return self.exit_code is not None


@dataclass
class RunRecord(Resource):
    """Immutable record of one apply invocation."""

    kind: ClassVar[str] = RUN_RECORD_KIND

    spec: RunRecordSpec
    status: RunRecordStatus = field(default_factory=RunRecordStatus)


def parse_raw_obj(doc: dict[str, Any]) -> Resource:
    """Parse a raw document into a Resource."""
    if not (kind := doc.get("kind")):
        raise InputException(f"Invalid object missing kind: {doc}")
    if kind == TRACKED_REPOSITORY_KIND:
        return TrackedRepository.parse_doc(doc)
    if kind == BUNDLE_KIND:
        return Bundle.parse_doc(doc)
    raise InputException(f"Unsupported object kind '{kind}'")
