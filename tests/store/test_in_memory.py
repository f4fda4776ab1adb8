"""Tests for the in memory store."""

from collections.abc import Callable

import pytest

from kude_controller.exceptions import (
    AlreadyExistsError,
    ConflictError,
    ObjectNotFoundError,
)
from kude_controller.manifest import (
    Bundle,
    NamedResource,
    ObjectMeta,
    OwnerReference,
    Resource,
    RunRecord,
    RunRecordSpec,
    TrackedRepository,
)
from kude_controller.store import InMemoryStore, StoreEvent

FINALIZER = "example.com/finalizer"


def make_run(name: str, owner: Bundle) -> RunRecord:
    return RunRecord(
        metadata=ObjectMeta(
            name=name,
            namespace=owner.namespace,
            labels={"owner": owner.metadata.uid},
            owner_references=[
                OwnerReference(
                    kind="Bundle",
                    name=owner.name,
                    uid=owner.metadata.uid,
                    controller=True,
                )
            ],
        ),
        spec=RunRecordSpec(commit_sha="abc", directory="/tmp", command="true"),
    )


def test_create_and_get_object(
    store: InMemoryStore, new_repository: Callable[..., TrackedRepository]
) -> None:
    """Test adding and retrieving an object."""
    repo = new_repository()
    created = store.create(repo)
    assert created.metadata.uid
    assert created.metadata.generation == 1
    assert created.metadata.resource_version
    assert created.metadata.creation_timestamp is not None
    assert repo.metadata.uid == created.metadata.uid

    result = store.get_object(repo.resource_id, TrackedRepository)
    assert result == created
    assert result is not created

    with pytest.raises(ValueError, match="is not of type Bundle"):
        store.get_object(repo.resource_id, Bundle)

    assert store.get_object(NamedResource("Bundle", "default", "x"), Bundle) is None


def test_create_duplicate(
    store: InMemoryStore, new_repository: Callable[..., TrackedRepository]
) -> None:
    """Test that creating an existing object fails."""
    store.create(new_repository())
    with pytest.raises(AlreadyExistsError):
        store.create(new_repository())


def test_returned_objects_are_copies(
    store: InMemoryStore, new_repository: Callable[..., TrackedRepository]
) -> None:
    """Test that mutating a returned object does not change the store."""
    repo = new_repository()
    store.create(repo)
    result = store.get_object(repo.resource_id, TrackedRepository)
    assert result
    result.spec.url = "https://example.com/other"
    stored = store.get_object(repo.resource_id, TrackedRepository)
    assert stored
    assert stored.spec.url != "https://example.com/other"


def test_creation_order(
    store: InMemoryStore, new_repository: Callable[..., TrackedRepository]
) -> None:
    """Test creation timestamps are strictly increasing."""
    timestamps = []
    for i in range(20):
        created = store.create(new_repository(name=f"repo-{i}"))
        timestamps.append(created.metadata.creation_timestamp)
    assert timestamps == sorted(timestamps)
    assert len(set(timestamps)) == len(timestamps)


def test_update_bumps_generation_on_spec_change(
    store: InMemoryStore, new_repository: Callable[..., TrackedRepository]
) -> None:
    """Test generation only changes with the spec."""
    repo = new_repository()
    store.create(repo)

    repo.metadata.labels["team"] = "platform"
    updated = store.update(repo)
    assert updated.metadata.generation == 1
    assert updated.metadata.labels == {"team": "platform"}

    repo.spec.ref = "develop"
    updated = store.update(repo)
    assert updated.metadata.generation == 2
    assert repo.metadata.generation == 2
    assert repo.metadata.resource_version == updated.metadata.resource_version


def test_update_preserves_status(
    store: InMemoryStore, new_repository: Callable[..., TrackedRepository]
) -> None:
    """Test update ignores status and update_status ignores spec."""
    repo = new_repository()
    store.create(repo)

    repo.status.last_pulled_sha = "abc"
    store.update_status(repo)

    repo.status.last_pulled_sha = "ignored"
    repo.spec.ref = "develop"
    store.update(repo)

    repo.spec.ref = "ignored"
    store.update_status(repo)

    stored = store.get_object(repo.resource_id, TrackedRepository)
    assert stored
    assert stored.spec.ref == "develop"
    assert stored.status.last_pulled_sha == "ignored"


def test_update_conflict(
    store: InMemoryStore, new_repository: Callable[..., TrackedRepository]
) -> None:
    """Test writes based on a stale resource version are rejected."""
    repo = new_repository()
    store.create(repo)
    stale = store.get_object(repo.resource_id, TrackedRepository)
    assert stale

    repo.spec.ref = "develop"
    store.update(repo)

    stale.spec.ref = "other"
    with pytest.raises(ConflictError, match="the object has been modified"):
        store.update(stale)
    with pytest.raises(ConflictError):
        store.update_status(stale)


def test_update_missing(
    store: InMemoryStore, new_repository: Callable[..., TrackedRepository]
) -> None:
    """Test updating an object that does not exist."""
    with pytest.raises(ObjectNotFoundError):
        store.update(new_repository())
    with pytest.raises(ObjectNotFoundError):
        store.update_status(new_repository())
    with pytest.raises(ObjectNotFoundError):
        store.delete(new_repository().resource_id)


def test_delete_without_finalizers(
    store: InMemoryStore, new_repository: Callable[..., TrackedRepository]
) -> None:
    """Test an object without finalizers is removed immediately."""
    events: list[tuple[StoreEvent, NamedResource]] = []
    store.add_listener(
        StoreEvent.OBJECT_DELETED,
        lambda rid, obj: events.append((StoreEvent.OBJECT_DELETED, rid)),
    )
    repo = new_repository()
    store.create(repo)
    store.delete(repo.resource_id)
    assert store.get_object(repo.resource_id, TrackedRepository) is None
    assert events == [(StoreEvent.OBJECT_DELETED, repo.resource_id)]


def test_delete_with_finalizers(
    store: InMemoryStore, new_repository: Callable[..., TrackedRepository]
) -> None:
    """Test an object is only removed once its finalizers are drained."""
    repo = new_repository()
    repo.add_finalizer(FINALIZER)
    store.create(repo)

    store.delete(repo.resource_id)
    marked = store.get_object(repo.resource_id, TrackedRepository)
    assert marked
    assert marked.is_deleting

    # Deleting again keeps the original timestamp
    store.delete(repo.resource_id)
    again = store.get_object(repo.resource_id, TrackedRepository)
    assert again
    assert again.metadata.deletion_timestamp == marked.metadata.deletion_timestamp

    # Removing the last finalizer removes the object
    assert again.remove_finalizer(FINALIZER)
    store.update(again)
    assert store.get_object(repo.resource_id, TrackedRepository) is None


def test_owner_reference_cascade(
    store: InMemoryStore, new_bundle: Callable[..., Bundle]
) -> None:
    """Test removing an owner removes the objects it owns."""
    bundle = new_bundle()
    bundle.add_finalizer(FINALIZER)
    store.create(bundle)
    other = new_bundle(name="other")
    store.create(other)
    for i in range(3):
        store.create(make_run(f"run-{i}", bundle))
    store.create(make_run("other-run", other))

    store.delete(bundle.resource_id)
    assert len(store.list_objects("RunRecord")) == 4

    deleting = store.get_object(bundle.resource_id, Bundle)
    assert deleting
    deleting.remove_finalizer(FINALIZER)
    store.update(deleting)
    runs = store.list_objects("RunRecord")
    assert [run.name for run in runs] == ["other-run"]


def test_list_objects(
    store: InMemoryStore,
    new_bundle: Callable[..., Bundle],
    new_repository: Callable[..., TrackedRepository],
) -> None:
    """Test listing objects by kind, namespace and labels."""
    bundle = new_bundle()
    store.create(bundle)
    store.create(new_repository())
    store.create(make_run("run-a", bundle))
    run_b = make_run("run-b", bundle)
    run_b.metadata.labels["extra"] = "yes"
    store.create(run_b)

    assert [obj.name for obj in store.list_objects("Bundle")] == ["bundle"]
    assert store.list_objects("Bundle", namespace="other") == []
    runs = store.list_objects("RunRecord", labels={"owner": bundle.metadata.uid})
    assert sorted(run.name for run in runs) == ["run-a", "run-b"]
    runs = store.list_objects(
        "RunRecord", labels={"owner": bundle.metadata.uid, "extra": "yes"}
    )
    assert [run.name for run in runs] == ["run-b"]


def test_field_index(
    store: InMemoryStore, new_bundle: Callable[..., Bundle]
) -> None:
    """Test field indexes follow object writes."""

    def index_func(obj: Resource) -> list[str]:
        assert isinstance(obj, Bundle)
        return [obj.spec.source_repository]

    store.create(new_bundle(name="a", source_repository="default/one"))
    store.add_index("Bundle", "source", index_func)
    b = new_bundle(name="b", source_repository="default/two")
    store.create(b)

    def names(value: str) -> list[str]:
        objs = store.list_objects("Bundle", index=("source", value))
        return [obj.name for obj in objs]

    assert names("default/one") == ["a"]
    assert names("default/two") == ["b"]

    b.spec.source_repository = "default/one"
    store.update(b)
    assert names("default/one") == ["a", "b"]
    assert names("default/two") == []

    store.delete(b.resource_id)
    assert names("default/one") == ["a"]

    with pytest.raises(ValueError, match="No index 'missing'"):
        store.list_objects("Bundle", index=("missing", "x"))
    with pytest.raises(ValueError, match="already registered"):
        store.add_index("Bundle", "source", index_func)


def test_listeners(
    store: InMemoryStore, new_repository: Callable[..., TrackedRepository]
) -> None:
    """Test listeners receive events until removed."""
    events: list[tuple[str, NamedResource]] = []

    def listener(event: StoreEvent) -> Callable[[NamedResource, Resource], None]:
        def callback(resource_id: NamedResource, obj: Resource) -> None:
            events.append((event.value, resource_id))

        return callback

    removers = [store.add_listener(event, listener(event)) for event in StoreEvent]
    repo = new_repository()
    rid = repo.resource_id
    store.create(repo)
    repo.status.last_pulled_sha = "abc"
    store.update_status(repo)
    repo.spec.ref = "develop"
    store.update(repo)
    store.delete(rid)
    assert events == [
        ("object_added", rid),
        ("status_updated", rid),
        ("object_updated", rid),
        ("object_deleted", rid),
    ]

    for remove in removers:
        remove()
    store.create(new_repository(name="other"))
    assert len(events) == 4


def test_listener_errors_are_logged(
    store: InMemoryStore, new_repository: Callable[..., TrackedRepository]
) -> None:
    """Test a failing listener does not fail the write."""

    def callback(resource_id: NamedResource, obj: Resource) -> None:
        raise RuntimeError("boom")

    store.add_listener(StoreEvent.OBJECT_ADDED, callback)
    repo = new_repository()
    store.create(repo)
    assert store.get_object(repo.resource_id, TrackedRepository)
