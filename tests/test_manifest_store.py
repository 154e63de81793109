from __future__ import annotations

import json
import multiprocessing
import threading
from pathlib import Path

import allure
import pytest

from driverflow.manifest.entries import ManifestEntry
from driverflow.manifest.locking import lock_name_for, named_lock
from driverflow.manifest.store import (
    AppendOutcome,
    ManifestStore,
    desired_order,
    plan_order,
)
from driverflow.orchestrator.errors import ManifestCorruption, ManifestLockTimeout
from driverflow.orchestrator.models import InstallerRegistration

pytestmark = [
    allure.epic("Install Manifest"),
    allure.feature("Shared Manifest Store"),
]


def _store(tmp_path: Path, *, lock_timeout_seconds: float = 5.0) -> ManifestStore:
    return ManifestStore(
        tmp_path / "install_manifest.json",
        lock_timeout_seconds=lock_timeout_seconds,
        lock_dir=tmp_path / "locks",
    )


def _registration(name: str, **kwargs: str) -> InstallerRegistration:
    return InstallerRegistration(
        name=name,
        command_line=kwargs.pop("command_line", f"{name}.exe"),
        arguments=kwargs.pop("arguments", "/quiet"),
        **kwargs,
    )


def _append_many(  # pragma: no cover - executed in child process
    manifest_path: str,
    lock_dir: str,
    prefix: str,
    count: int,
    start_event: multiprocessing.synchronize.Event,
    result_queue: multiprocessing.queues.Queue[tuple[str, str]],
) -> None:
    store = ManifestStore(Path(manifest_path), lock_timeout_seconds=20.0, lock_dir=Path(lock_dir))
    try:
        start_event.wait(timeout=10)
        for index in range(count):
            store.append_entry(None, _registration(f"{prefix}-{index}"))
        result_queue.put((prefix, "ok"))
    except Exception as error:  # noqa: BLE001
        result_queue.put((prefix, f"error: {error}"))


def test_append_assigns_dense_priorities_and_writes_json_shape(tmp_path: Path) -> None:
    store = _store(tmp_path)

    first = store.append_entry("vendor.nic", _registration("nic", package_identifier="vendor.nic"))
    second = store.append_entry(None, _registration("gpu", dependency_for="nic"))

    assert first.outcome == AppendOutcome.APPENDED
    assert (first.entry.priority, second.entry.priority) == (1, 2)
    document = json.loads(store.path.read_text("utf-8"))
    assert document == [
        {
            "Priority": 1,
            "Name": "nic",
            "CommandLine": "nic.exe",
            "Arguments": "/quiet",
            "PackageIdentifier": "vendor.nic",
        },
        {
            "Priority": 2,
            "Name": "gpu",
            "CommandLine": "gpu.exe",
            "Arguments": "/quiet",
            "DependencyFor": "nic",
        },
    ]


def test_duplicate_append_is_a_no_op(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.append_entry("vendor.nic", _registration("nic", package_identifier="vendor.nic"))
    before = store.path.read_bytes()

    by_identity = store.append_entry("vendor.nic", _registration("nic renamed"))
    by_fields = store.append_entry(None, _registration("nic"))

    assert by_identity.outcome == AppendOutcome.DUPLICATE
    assert by_fields.outcome == AppendOutcome.DUPLICATE
    assert by_identity.entry.priority == 1
    assert store.path.read_bytes() == before


def test_append_renumbers_gapped_priorities(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.path.write_text(
        json.dumps(
            [
                {"Priority": 4, "Name": "a", "CommandLine": "a.exe", "Arguments": ""},
                {"Priority": 9, "Name": "b", "CommandLine": "b.exe", "Arguments": ""},
            ],
        ),
        encoding="utf-8",
    )

    result = store.append_entry(None, _registration("c"))

    assert result.entry.priority == 3
    assert [entry.priority for entry in store.load()] == [1, 2, 3]


def test_reorder_matches_requested_order_and_is_idempotent(tmp_path: Path) -> None:
    store = _store(tmp_path)
    for name in ("z", "x", "y"):
        store.append_entry(None, _registration(name))

    assert store.reorder_to_match(desired_order(["x", "y", "z"])) is True
    entries = store.load()
    assert [(entry.name, entry.priority) for entry in entries] == [("x", 1), ("y", 2), ("z", 3)]

    snapshot = store.path.read_bytes()
    assert store.reorder_to_match(desired_order(["x", "y", "z"])) is False
    assert store.path.read_bytes() == snapshot


def test_reorder_places_unknown_entries_last_in_original_order(tmp_path: Path) -> None:
    store = _store(tmp_path)
    for name in ("extra-1", "b", "extra-2", "a"):
        store.append_entry(None, _registration(name))

    store.reorder_to_match(desired_order(["a", "b"]))

    assert [entry.name for entry in store.load()] == ["a", "b", "extra-1", "extra-2"]


def test_dependents_are_ordered_before_their_targets() -> None:
    entries = [
        ManifestEntry(priority=1, name="driver", command_line="driver.exe"),
        ManifestEntry(priority=2, name="runtime", command_line="rt.exe", dependency_for="driver"),
        ManifestEntry(priority=3, name="vcredist", command_line="vc.exe", dependency_for="runtime"),
        ManifestEntry(priority=4, name="tool", command_line="tool.exe"),
    ]

    ordered = plan_order(entries, desired_order(["driver", "tool", "runtime", "vcredist"]))

    assert [entry.name for entry in ordered] == ["vcredist", "runtime", "driver", "tool"]


def test_dependency_cycle_still_places_every_entry() -> None:
    entries = [
        ManifestEntry(priority=1, name="a", command_line="a.exe", dependency_for="b"),
        ManifestEntry(priority=2, name="b", command_line="b.exe", dependency_for="a"),
    ]

    ordered = plan_order(entries, desired_order(["a", "b"]))

    assert sorted(entry.name for entry in ordered) == ["a", "b"]


def test_corrupt_manifest_is_backed_up_and_rebuilt(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.path.write_text("{not json", encoding="utf-8")

    assert store.load() == []
    result = store.append_entry(None, _registration("nic"))

    assert result.entry.priority == 1
    backups = list(tmp_path.glob("install_manifest.corrupt-*.json"))
    assert len(backups) == 1
    assert backups[0].read_text("utf-8") == "{not json"
    assert [entry.name for entry in store.load()] == ["nic"]


def test_entry_without_name_is_corrupt() -> None:
    with pytest.raises(ManifestCorruption, match="Name"):
        ManifestEntry.from_json({"Priority": 1})


def test_lock_timeout_when_lock_is_held(tmp_path: Path) -> None:
    store = _store(tmp_path, lock_timeout_seconds=0.2)
    holding = threading.Event()
    release = threading.Event()

    def _hold() -> None:
        with named_lock(store.lock_name, lock_dir=store.lock_dir, timeout_seconds=5.0):
            holding.set()
            release.wait(timeout=5)

    holder = threading.Thread(target=_hold)
    holder.start()
    try:
        assert holding.wait(timeout=5)
        with pytest.raises(ManifestLockTimeout) as error_info:
            store.append_entry(None, _registration("nic"))
    finally:
        release.set()
        holder.join(timeout=5)

    assert error_info.value.lock_name == store.lock_name
    assert not store.path.exists()
    assert store.append_entry(None, _registration("nic")).outcome == AppendOutcome.APPENDED


def test_lock_name_is_stable_per_path(tmp_path: Path) -> None:
    first = tmp_path / "a" / "install_manifest.json"
    second = tmp_path / "b" / "install_manifest.json"

    assert lock_name_for(first) == lock_name_for(tmp_path / "a" / ".." / "a" / "install_manifest.json")
    assert lock_name_for(first) != lock_name_for(second)
    assert lock_name_for(first).startswith("driverflow-manifest-")


def test_concurrent_thread_appends_keep_priorities_unique(tmp_path: Path) -> None:
    store = _store(tmp_path, lock_timeout_seconds=20.0)
    start_event = threading.Event()
    errors: list[Exception] = []

    def _append(prefix: str) -> None:
        start_event.wait(timeout=5)
        try:
            for index in range(10):
                store.append_entry(None, _registration(f"{prefix}-{index}"))
        except Exception as error:  # noqa: BLE001
            errors.append(error)

    threads = [threading.Thread(target=_append, args=(f"t{n}",)) for n in range(4)]
    for thread in threads:
        thread.start()
    start_event.set()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    entries = store.load()
    assert len(entries) == 40
    assert [entry.priority for entry in entries] == list(range(1, 41))
    assert len({entry.name for entry in entries}) == 40


def test_concurrent_process_appends_keep_priorities_unique(tmp_path: Path) -> None:
    manifest_path = tmp_path / "install_manifest.json"
    lock_dir = tmp_path / "locks"
    context = multiprocessing.get_context("spawn")
    start_event = context.Event()
    result_queue: multiprocessing.queues.Queue[tuple[str, str]] = context.Queue()
    processes = [
        context.Process(
            target=_append_many,
            args=(str(manifest_path), str(lock_dir), prefix, 5, start_event, result_queue),
        )
        for prefix in ("proc-a", "proc-b", "proc-c")
    ]

    for process in processes:
        process.start()
    start_event.set()
    for process in processes:
        process.join(timeout=60)
    assert [process.exitcode for process in processes] == [0, 0, 0]

    statuses = dict(result_queue.get(timeout=5) for _ in processes)
    assert statuses == {"proc-a": "ok", "proc-b": "ok", "proc-c": "ok"}
    entries = ManifestStore(manifest_path, lock_dir=lock_dir).load()
    assert len(entries) == 15
    assert [entry.priority for entry in entries] == list(range(1, 16))
