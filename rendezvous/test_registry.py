# Copyright (C) 2019-2026 Rhys Ulerich <rhys.ulerich@gmail.com>
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at http://mozilla.org/MPL/2.0/.
"""Tests for TaskRegistry -- keyed, concurrent, event-based work."""
import concurrent.futures
import sys
import threading
import typing
import unittest

from .impl import CallerContext, DuplicateKey, WorkerFailure
from .registry import Completed, TaskRegistry


class Recorder:
    """Listener collecting Completed notifications for later assertions."""

    def __init__(self, registry: TaskRegistry) -> None:
        self.registry = registry
        self.lock = threading.Lock()
        self.completed = []  # type: typing.List[Completed]
        self.present = []  # type: typing.List[bool]
        self.threads = []  # type: typing.List[int]
        self.events = {}  # type: typing.Dict[typing.Hashable, threading.Event]

    def expect(self, key: typing.Hashable) -> threading.Event:
        with self.lock:
            return self.events.setdefault(key, threading.Event())

    def __call__(self, completed: Completed) -> None:
        with self.lock:
            self.completed.append(completed)
            self.present.append(completed.key in self.registry)
            self.threads.append(threading.get_ident())
        self.expect(completed.key).set()

    def keys(self) -> typing.List[typing.Hashable]:
        with self.lock:
            return [c.key for c in self.completed]


class TaskRegistryTest(unittest.TestCase):
    """Tests verifying keyed start, duplicate rejection, and notification."""

    @staticmethod
    def helper_gate(event: threading.Event) -> str:
        """Helper stalling a worker until event is set."""
        assert event.wait(timeout=60.0), "Gate never opened"
        return "released"

    @staticmethod
    def helper_count(counter: typing.List[int], lock: threading.Lock) -> int:
        """Helper recording how many times it has been invoked."""
        with lock:
            counter[0] += 1
            return counter[0]

    @staticmethod
    def helper_raise(klass: type, *args) -> typing.NoReturn:
        raise klass(*args)

    def setUp(self) -> None:
        self.registry = TaskRegistry()
        self.recorder = Recorder(self.registry)
        self.registry.subscribe(self.recorder)

    def test_start_and_complete(self) -> None:
        """Keyed work completes, notifies once, and is forgotten."""
        fired = self.recorder.expect("k")
        handle = self.registry.start("k", len, args=("abc",))
        self.assertTrue(fired.wait(timeout=60))
        self.assertEqual(3, handle.result())
        self.assertEqual(["k"], self.recorder.keys())
        completed = self.recorder.completed[0]
        self.assertEqual("k", completed.key)
        self.assertEqual(3, completed.outcome.unwrap())
        self.assertNotIn("k", self.registry)
        self.assertEqual(0, len(self.registry))
        self.assertIsNone(self.registry.get("k"))

    def test_duplicate_key(self) -> None:
        """Duplicate in-flight keys are rejected without running work."""
        gate = threading.Event()
        counter, lock = [0], threading.Lock()
        fired = self.recorder.expect("k")
        first = self.registry.start("k", self.helper_gate, args=(gate,))
        self.assertIn("k", self.registry)
        self.assertIs(first, self.registry.get("k"))

        with self.assertRaises(DuplicateKey) as cm:
            self.registry.start("k", self.helper_count, args=(counter, lock))
        self.assertIsInstance(cm.exception, KeyError)
        self.assertEqual(1, len(self.registry))

        gate.set()
        self.assertTrue(fired.wait(timeout=60))
        self.assertEqual("released", first.result())
        self.assertEqual(0, counter[0], "Rejected work never ran")

        # Once removed, the key may be reused immediately
        second = self.registry.start(
            "k", self.helper_count, args=(counter, lock)
        )
        self.assertEqual(1, second.result(timeout=60))

    def test_reuse_after_observing(self) -> None:
        """Keys are reusable as soon as wait(), end(), or done() reports."""
        interval = sys.getswitchinterval()
        sys.setswitchinterval(1e-6)  # Provoke thread switches
        try:
            for i in range(1000):
                handle = self.registry.start("k", len, args=("abc",))
                if i % 3 == 0:
                    self.assertEqual(3, handle.wait(timeout=60).unwrap())
                elif i % 3 == 1:
                    self.assertEqual(3, handle.end(timeout=60).unwrap())
                else:
                    while not handle.done():
                        pass
                self.assertNotIn("k", self.registry)
        finally:
            sys.setswitchinterval(interval)

    def test_base_exception_forgotten(self) -> None:
        """Work raising e.g. KeyboardInterrupt does not leak its key."""
        fired = self.recorder.expect("k")
        handle = self.registry.start(
            "k", self.helper_raise, args=(KeyboardInterrupt,)
        )
        self.assertIsInstance(handle.wait(timeout=60).exception, WorkerFailure)
        self.assertNotIn("k", self.registry)
        self.assertTrue(fired.wait(timeout=60))
        again = self.registry.start("k", len, args=("abc",))
        self.assertEqual(3, again.result(timeout=60))

    def test_removed_before_notification(self) -> None:
        """Listeners never observe their own key still in flight."""
        fired = self.recorder.expect("k")
        self.registry.start("k", self.helper_raise, args=(ValueError, "x"))
        self.assertTrue(fired.wait(timeout=60))
        self.assertEqual([False], self.recorder.present)

    def test_restart_from_listener(self) -> None:
        """A listener may start new work reusing the just completed key."""
        restarted = []  # type: typing.List[typing.Any]
        done = threading.Event()

        def restart(completed: Completed) -> None:
            if not restarted:
                restarted.append(
                    self.registry.start(completed.key, len, args=("xy",))
                )
            else:
                done.set()

        self.registry.subscribe(restart)
        self.registry.start("again", len, args=("x",))
        self.assertTrue(done.wait(timeout=60))
        self.assertEqual(2, restarted[0].result(timeout=60))
        self.assertEqual(["again", "again"], self.recorder.keys())

    def test_concurrent_keys(self) -> None:
        """Distinct keys run concurrently and each notifies exactly once."""
        gates = {key: threading.Event() for key in ("Async1", "Async2")}
        fired = {key: self.recorder.expect(key) for key in gates}
        handles = {
            key: self.registry.start(key, self.helper_gate, args=(gate,))
            for key, gate in gates.items()
        }
        self.assertEqual(2, len(self.registry))
        self.assertEqual(["Async1", "Async2"], sorted(self.registry.keys()))

        gates["Async2"].set()
        self.assertTrue(fired["Async2"].wait(timeout=60))
        self.assertNotIn("Async2", self.registry)
        self.assertIn("Async1", self.registry)
        self.assertFalse(handles["Async1"].done())

        gates["Async1"].set()
        self.assertTrue(fired["Async1"].wait(timeout=60))
        self.assertNotIn("Async1", self.registry)
        self.assertEqual(["Async2", "Async1"], self.recorder.keys())
        self.assertEqual([False, False], self.recorder.present)

    def test_failure_notified(self) -> None:
        """Failed work is reported to listeners as a failed Outcome."""
        fired = self.recorder.expect(7)
        handle = self.registry.start(
            7, self.helper_raise, args=(ZeroDivisionError,)
        )
        self.assertTrue(fired.wait(timeout=60))
        outcome = self.recorder.completed[0].outcome
        self.assertTrue(outcome.failed)
        self.assertIsInstance(outcome.exception, WorkerFailure)
        self.assertIs(outcome, handle.wait())
        self.assertNotIn(7, self.registry)

    def test_listener_raised(self) -> None:
        """A raising listener is logged and later listeners still run."""
        registry = TaskRegistry()
        recorder = Recorder(registry)
        registry.subscribe(lambda c: self.helper_raise(RuntimeError, "bad"))
        registry.subscribe(recorder)
        fired = recorder.expect("k")
        with self.assertLogs("rendezvous.registry", level="ERROR") as logs:
            registry.start("k", len, args=("",))
            self.assertTrue(fired.wait(timeout=60))
        self.assertEqual(1, len(logs.records))
        self.assertEqual(["k"], recorder.keys())

    def test_unsubscribe(self) -> None:
        """Unsubscribed listeners receive no further notifications."""
        registry = TaskRegistry()
        recorder, sentinel = Recorder(registry), Recorder(registry)
        registry.subscribe(recorder)
        registry.subscribe(sentinel)
        registry.unsubscribe(recorder)
        fired = sentinel.expect("k")
        registry.start("k", len, args=("",))
        self.assertTrue(fired.wait(timeout=60))
        self.assertEqual([], recorder.keys())
        with self.assertRaises(ValueError):
            registry.unsubscribe(recorder)

    def test_context(self) -> None:
        """Notifications are posted to a CallerContext when provided."""
        context = CallerContext()
        registry = TaskRegistry(context=context)
        recorder = Recorder(registry)
        registry.subscribe(recorder)
        handle = registry.start("k", len, args=("abcd",))
        self.assertEqual(4, handle.result(timeout=60))
        self.assertEqual(1, context.pump(timeout=60))
        self.assertEqual(["k"], recorder.keys())
        self.assertEqual([threading.get_ident()], recorder.threads)

    def test_register_race(self) -> None:
        """Of many threads racing to start one key, exactly one wins."""
        gate = threading.Event()
        barrier = threading.Barrier(8)
        winners = []  # type: typing.List[typing.Any]
        losers = []  # type: typing.List[None]
        lock = threading.Lock()

        def racer() -> None:
            barrier.wait(timeout=60)
            try:
                handle = self.registry.start(
                    "race", self.helper_gate, args=(gate,)
                )
            except DuplicateKey:
                with lock:
                    losers.append(None)
            else:
                with lock:
                    winners.append(handle)

        threads = [threading.Thread(target=racer) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)
        self.assertEqual(1, len(winners))
        self.assertEqual(7, len(losers))
        gate.set()
        self.assertEqual("released", winners[0].result(timeout=60))

    def test_launch_failure_unwinds(self) -> None:
        """Should launching fail, the key is not left in flight."""
        executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
        executor.shutdown()
        registry = TaskRegistry(executor=executor)
        with self.assertRaises(RuntimeError):
            registry.start("k", len, args=("",))
        self.assertNotIn("k", registry)


if __name__ == "__main__":
    unittest.main()
