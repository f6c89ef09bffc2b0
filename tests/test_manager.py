"""Tests for the transfer manager: lifecycle, coalescing, cancellation and history."""

from __future__ import annotations

import errno
import tempfile
import threading
import time
import unittest

from fakes import ScriptedProtocol, blocking, dir_entry, file_entry, raising, ticks, wait_until

from filebeam.errors import PermissionDenied, RemoteUnavailable, StorageFull
from filebeam.transfers.manager import TransferManager, TransferOpts, error_kind
from filebeam.transfers.state import StateStore, TransferTask


class _Deny:
    def __init__(self) -> None:
        self.asked = 0

    def request(self) -> bool:
        self.asked += 1
        return False


class _BrokenGallery:
    def import_file(self, path: str) -> str:
        raise OSError("album is read-only")


class _FlakyStore(StateStore):
    """Store whose writes fail with ENOSPC whenever `fail_when(task)` is true."""

    def __init__(self, base_dir, fail_when) -> None:
        super().__init__(base_dir)
        self.fail_when = fail_when

    def save(self, task) -> None:
        if self.fail_when(task):
            raise OSError(errno.ENOSPC, "No space left on device")
        super().save(task)


class _Recorder:
    def __init__(self) -> None:
        self.snapshots: list[list[TransferTask]] = []
        self._lock = threading.Lock()

    def __call__(self, tasks) -> None:
        with self._lock:
            self.snapshots.append(tasks)

    def history(self, tid: str) -> list[TransferTask]:
        with self._lock:
            return [t for snap in self.snapshots for t in snap if t.tid == tid]


class ManagerTestCase(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.tmp = tmp.name
        self.store = StateStore(f"{self.tmp}/state")
        self.protocol = ScriptedProtocol()

    def make(self, **kw) -> TransferManager:
        opts = TransferOpts(
            download_dir=f"{self.tmp}/downloads",
            max_concurrent=kw.pop("max_concurrent", 3),
            history_limit=kw.pop("history_limit", 50),
            timeout=kw.pop("timeout", 5),
            save_interval=0,
        )
        manager = TransferManager(self.protocol, store=self.store, opts=opts, **kw)
        self.addCleanup(manager.shutdown, 1.0)
        return manager


class LifecycleTests(ManagerTestCase):
    def test_progress_is_published_then_completed(self) -> None:
        self.protocol.scripts["a.bin"] = ticks((50, 200), (200, 200))
        manager = self.make()
        rec = _Recorder()
        manager.subscribe(rec)

        tid = manager.start_download(file_entry("a.bin"))
        task = manager.wait(tid, 5)

        self.assertEqual(task.status, "completed")
        self.assertEqual(task.bytes_written, 200)
        self.assertEqual(task.bytes_expected, 200)
        seen = rec.history(tid)
        percents = [t.percent for t in seen if t.status == "in_progress"]
        self.assertIn(25.0, percents)
        self.assertIn(100.0, percents)
        self.assertEqual(seen[0].status, "queued")
        self.assertEqual(seen[-1].status, "completed")

    def test_reported_bytes_never_go_backwards(self) -> None:
        self.protocol.scripts["a.bin"] = ticks((100, 200), (40, 200), (200, 200))
        manager = self.make()
        rec = _Recorder()
        manager.subscribe(rec)

        tid = manager.start_download(file_entry("a.bin"))
        manager.wait(tid, 5)

        written = [t.bytes_written for t in rec.history(tid)]
        self.assertEqual(written, sorted(written))

    def test_duplicate_request_returns_running_task(self) -> None:
        release = threading.Event()
        self.protocol.scripts["Movies/a.mp4"] = blocking(release)
        manager = self.make()

        first = manager.start_download(file_entry("Movies/a.mp4"))
        second = manager.start_download(file_entry("Movies/a.mp4"))
        release.set()
        manager.wait(first, 5)

        self.assertEqual(first, second)
        self.assertEqual(self.protocol.calls, ["Movies/a.mp4"])

    def test_same_name_in_other_folder_is_a_separate_task(self) -> None:
        release = threading.Event()
        self.addCleanup(release.set)
        self.protocol.scripts["x/a.jpg"] = blocking(release)
        manager = self.make()

        a = manager.start_download(file_entry("x/a.jpg"))
        b = manager.start_download(file_entry("y/a.jpg"))
        release.set()
        ta, tb = manager.wait(a, 5), manager.wait(b, 5)

        self.assertNotEqual(a, b)
        self.assertNotEqual(ta.local_path, tb.local_path)

    def test_new_request_after_completion_starts_again(self) -> None:
        manager = self.make()
        first = manager.start_download(file_entry("a.bin"))
        manager.wait(first, 5)

        second = manager.start_download(file_entry("a.bin"))
        manager.wait(second, 5)

        self.assertNotEqual(first, second)
        self.assertEqual(self.protocol.calls, ["a.bin", "a.bin"])

    def test_directory_cannot_be_downloaded(self) -> None:
        manager = self.make()
        with self.assertRaises(ValueError):
            manager.start_download(dir_entry("Movies"))


class FailureTests(ManagerTestCase):
    def test_failure_kinds_are_recorded(self) -> None:
        cases = {
            "remote.bin": (RemoteUnavailable("connection reset"), "RemoteUnavailable"),
            "full.bin": (OSError(errno.ENOSPC, "No space left on device"), "StorageFull"),
            "denied.bin": (OSError(errno.EACCES, "Permission denied"), "PermissionDenied"),
            "odd.bin": (RuntimeError("boom"), "Unknown"),
        }
        for path, (exc, _) in cases.items():
            self.protocol.scripts[path] = raising(exc)
        manager = self.make()

        for path, (_, kind) in cases.items():
            task = manager.wait(manager.start_download(file_entry(path)), 5)
            self.assertEqual(task.status, "failed", path)
            self.assertEqual(task.last_error, kind, path)
            self.assertTrue(task.error)

    def test_one_failure_does_not_affect_another_transfer(self) -> None:
        self.protocol.scripts["a.bin"] = raising(RemoteUnavailable("gone"))
        self.protocol.scripts["b.bin"] = ticks((10, 10))
        manager = self.make()

        a = manager.start_download(file_entry("a.bin"))
        b = manager.start_download(file_entry("b.bin"))

        self.assertEqual(manager.wait(a, 5).status, "failed")
        self.assertEqual(manager.wait(b, 5).status, "completed")

    def test_permission_denied_creates_no_task(self) -> None:
        deny = _Deny()
        manager = self.make(permissions=deny)

        with self.assertRaises(PermissionDenied):
            manager.start_download(file_entry("a.bin"))
        with self.assertRaises(PermissionDenied):
            manager.start_download(file_entry("a.bin"))

        self.assertEqual(manager.snapshot(), [])
        self.assertEqual(self.protocol.calls, [])
        self.assertEqual(deny.asked, 2)

    def test_gallery_failure_keeps_completed_download(self) -> None:
        self.protocol.scripts["a.jpg"] = ticks((5, 5))
        manager = self.make(gallery=_BrokenGallery())

        task = manager.wait(manager.start_download(file_entry("a.jpg")), 5)

        self.assertEqual(task.status, "completed")
        self.assertIn("gallery import failed", task.warning)

    def test_listener_error_does_not_stop_transfer(self) -> None:
        manager = self.make()

        def explode(tasks):
            raise RuntimeError("listener bug")

        manager.subscribe(explode)
        task = manager.wait(manager.start_download(file_entry("a.bin")), 5)

        self.assertEqual(task.status, "completed")

    def test_error_kind_mapping(self) -> None:
        self.assertEqual(error_kind(OSError(errno.ENOSPC, "full")), "StorageFull")
        self.assertEqual(error_kind(OSError(errno.EPERM, "nope")), "PermissionDenied")
        self.assertEqual(error_kind(ValueError("x")), "Unknown")


class CancelTests(ManagerTestCase):
    def test_cancel_running_transfer(self) -> None:
        release = threading.Event()
        self.addCleanup(release.set)
        self.protocol.scripts["a.bin"] = blocking(release, first_tick=(10, 100))
        manager = self.make()
        tid = manager.start_download(file_entry("a.bin"))
        self.assertTrue(wait_until(lambda: manager.get(tid).status == "in_progress"))

        self.assertTrue(manager.cancel(tid))
        task = manager.wait(tid, 5)

        self.assertEqual(task.status, "cancelled")
        self.assertIsNone(task.last_error)

    def test_cancel_queued_transfer_never_reaches_transport(self) -> None:
        release = threading.Event()
        self.addCleanup(release.set)
        self.protocol.scripts["a.bin"] = blocking(release)
        manager = self.make(max_concurrent=1)
        a = manager.start_download(file_entry("a.bin"))
        self.assertTrue(self.protocol.started.wait(5))
        b = manager.start_download(file_entry("b.bin"))
        self.assertEqual(manager.get(b).status, "queued")

        self.assertTrue(manager.cancel(b))
        release.set()
        manager.wait(a, 5)

        self.assertEqual(manager.get(b).status, "cancelled")
        self.assertEqual(self.protocol.calls, ["a.bin"])

    def test_cancel_finished_or_unknown_is_refused(self) -> None:
        manager = self.make()
        tid = manager.start_download(file_entry("a.bin"))
        manager.wait(tid, 5)

        self.assertFalse(manager.cancel(tid))
        self.assertFalse(manager.cancel("nope"))
        self.assertEqual(manager.get(tid).status, "completed")


class HistoryTests(ManagerTestCase):
    def test_history_is_capped_and_evicted_records_deleted(self) -> None:
        manager = self.make(history_limit=2)
        tids = []
        for name in ("a.bin", "b.bin", "c.bin"):
            tid = manager.start_download(file_entry(name))
            manager.wait(tid, 5)
            tids.append(tid)

        self.assertEqual([t.tid for t in manager.snapshot()], tids[1:])
        self.assertFalse(self.store.exists(tids[0]))

    def test_interrupted_records_are_restored_as_failed(self) -> None:
        stale = TransferTask(tid="deadbeef0001", file_key="a.bin", name="a.bin",
                             remote_path="a.bin", local_path=f"{self.tmp}/a.bin", status="in_progress")
        self.store.save(stale)

        manager = self.make()
        task = manager.get("deadbeef0001")

        self.assertEqual(task.status, "failed")
        self.assertEqual(task.last_error, "Unknown")
        self.assertEqual(task.error, "interrupted")
        self.assertEqual(self.store.load("deadbeef0001").status, "failed")

    def test_list_and_clear_history(self) -> None:
        manager = self.make()
        manager.wait(manager.start_download(file_entry("a.bin")), 5)

        self.assertEqual(len(manager.list()["transfers"]), 1)
        self.assertEqual(manager.clear_history(), 1)
        self.assertEqual(manager.list(), {"transfers": []})



class LifecycleExtraTests(ManagerTestCase):
    def test_finished_at_not_before_started_at(self) -> None:
        self.protocol.scripts["a.bin"] = ticks((3, 3))
        manager = self.make()

        task = manager.wait(manager.start_download(file_entry("a.bin")), 5)

        self.assertEqual(task.status, "completed")
        self.assertIsNotNone(task.started_at)
        self.assertGreaterEqual(task.finished_at, task.started_at)
        self.assertEqual(task.bytes_written, task.bytes_expected)

    def test_short_transfer_against_known_size_fails(self) -> None:
        self.protocol.scripts["a.bin"] = ticks((50, 200), final=120)
        manager = self.make()

        task = manager.wait(manager.start_download(file_entry("a.bin")), 5)

        self.assertEqual(task.status, "failed")
        self.assertEqual(task.last_error, "RemoteUnavailable")
        self.assertIn("120 of 200", task.error)

    def test_unsubscribe_twice_is_harmless(self) -> None:
        manager = self.make()
        rec = _Recorder()
        unsubscribe = manager.subscribe(rec)

        unsubscribe()
        unsubscribe()
        manager.wait(manager.start_download(file_entry("a.bin")), 5)

        self.assertEqual(rec.snapshots, [])


class CancelIsolationTests(ManagerTestCase):
    def test_cancelling_one_running_transfer_leaves_the_other_alone(self) -> None:
        release_a, release_b = threading.Event(), threading.Event()
        self.addCleanup(release_a.set)
        self.addCleanup(release_b.set)
        self.protocol.scripts["a.bin"] = blocking(release_a, first_tick=(1, 10))
        self.protocol.scripts["b.bin"] = blocking(release_b, first_tick=(2, 10), final=10)
        manager = self.make()
        a = manager.start_download(file_entry("a.bin"))
        b = manager.start_download(file_entry("b.bin"))
        self.assertTrue(wait_until(lambda: manager.get(a).status == "in_progress" and manager.get(b).status == "in_progress"))

        self.assertTrue(manager.cancel(a))
        self.assertEqual(manager.wait(a, 5).status, "cancelled")

        b_task = manager.get(b)
        self.assertEqual(b_task.status, "in_progress")
        self.assertEqual(b_task.bytes_written, 2)
        release_b.set()
        self.assertEqual(manager.wait(b, 5).status, "completed")


class HistoryLimitTests(ManagerTestCase):
    def test_zero_history_forgets_finished_transfers(self) -> None:
        manager = self.make(history_limit=0)

        tid = manager.start_download(file_entry("a.bin"))
        self.assertIsNone(manager.wait(tid, 5))

        self.assertEqual(manager.snapshot(), [])
        self.assertFalse(self.store.exists(tid))


class StoreFailureTests(ManagerTestCase):
    def test_failed_first_write_registers_nothing_and_can_be_retried(self) -> None:
        saves = []

        def first_only(task):
            saves.append(task.tid)
            return len(saves) == 1

        self.store = _FlakyStore(f"{self.tmp}/state", first_only)
        manager = self.make()

        with self.assertRaises(StorageFull):
            manager.start_download(file_entry("a.bin"))
        self.assertEqual(manager.snapshot(), [])

        task = manager.wait(manager.start_download(file_entry("a.bin")), 5)

        self.assertEqual(task.status, "completed")
        self.assertEqual(self.protocol.calls, ["a.bin"])

    def test_failed_final_write_still_finishes_the_task(self) -> None:
        self.store = _FlakyStore(f"{self.tmp}/state", lambda task: task.status == "completed")
        manager = self.make()

        first = manager.start_download(file_entry("a.bin"))
        task = manager.wait(first, 5)

        self.assertEqual(task.status, "completed")
        self.assertIn("not saved", task.warning)
        second = manager.start_download(file_entry("a.bin"))
        self.assertNotEqual(first, second)
        manager.wait(second, 5)


class StallTimeoutTests(ManagerTestCase):
    def test_stalled_transfer_fails_as_remote_unavailable(self) -> None:
        release = threading.Event()
        self.addCleanup(release.set)
        self.protocol.scripts["a.bin"] = blocking(release, first_tick=(0, 10))
        manager = self.make(timeout=0.2)

        task = manager.wait(manager.start_download(file_entry("a.bin")), 3)

        self.assertEqual(task.status, "failed")
        self.assertEqual(task.last_error, "RemoteUnavailable")

    def test_late_transport_result_is_ignored(self) -> None:
        release = threading.Event()
        self.addCleanup(release.set)
        done = threading.Event()

        def ignores_stop(task, on_progress, stop):
            on_progress(0, 10)
            release.wait(5)
            on_progress(10, 10)
            done.set()
            return 10

        self.protocol.scripts["a.bin"] = ignores_stop
        manager = self.make(timeout=0.2)
        tid = manager.start_download(file_entry("a.bin"))
        self.assertEqual(manager.wait(tid, 3).status, "failed")

        release.set()
        self.assertTrue(done.wait(5))
        time.sleep(0.1)

        task = manager.get(tid)
        self.assertEqual(task.status, "failed")
        self.assertEqual(task.bytes_written, 0)

    def test_steady_progress_outlives_the_timeout(self) -> None:
        def steady(task, on_progress, stop):
            for i in range(1, 11):
                time.sleep(0.05)
                on_progress(i, 10)
            return 10

        self.protocol.scripts["a.bin"] = steady
        manager = self.make(timeout=0.2)

        task = manager.wait(manager.start_download(file_entry("a.bin")), 5)

        self.assertEqual(task.status, "completed")


if __name__ == "__main__":
    unittest.main()
