# Copyright (C) 2019-2026 Rhys Ulerich <rhys.ulerich@gmail.com>
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at http://mozilla.org/MPL/2.0/.
"""Tests for Handle, CallerContext, and related classes."""
import concurrent.futures
import contextlib
import copy
import pickle
import threading
import time
import typing
import unittest

from .impl import (
    AlreadyConsumed,
    Blocked,
    CallbackRaised,
    CallerContext,
    Handle,
    Outcome,
    Overflow,
    Raised,
    Returned,
    State,
    WorkerFailure,
    as_future,
    shared_executor,
    start,
)


class HandleTest(unittest.TestCase):
    """Unit tests (doubling as examples) for Handle/Outcome/start."""

    @staticmethod
    def helper_gate(event: threading.Event) -> str:
        """Helper stalling a worker until event is set."""
        # Timeout allows heavy OS load while also detecting complete breakage
        assert event.wait(timeout=60.0), "Gate never opened"
        return "released"

    @staticmethod
    def helper_raise(klass: type, *args) -> typing.NoReturn:
        raise klass(*args)

    @staticmethod
    def helper_callback(
        outcome: Outcome, lizt: typing.List, index: int, increment: int
    ) -> None:
        """Helper permitting tests to observe callbacks firing."""
        lizt[index] += increment

    @contextlib.contextmanager
    def assert_elapsed(self, minimum: float):  # type: ignore
        """Asserts a 'with' block required at least minimum seconds to run."""
        start = time.monotonic()
        yield
        elapsed = time.monotonic() - start
        self.assertGreaterEqual(elapsed, minimum, "Not enough seconds elapsed")

    def test_defaults(self) -> None:
        """Default start(...) and retrieval ok?"""
        f = start(len, args=((1, 2, 3),))
        g = start(str, kwargs=dict(object=2))
        h = start(lambda x: len(x), args=((1, 2, 3, 4),))
        self.assertEqual(4, h.result())
        self.assertEqual("2", g.result())
        self.assertEqual(3, f.result())
        self.assertEqual(3, f.result(), "Multiple calls OK")
        self.assertIsInstance(f.wait(), Returned)
        self.assertIs(f.wait(), f.wait(), "Same Outcome every time")

    def test_returns_none(self) -> None:
        """None can be returned as a result."""
        f = start(min, args=((),), kwargs=dict(default=None))
        outcome = f.wait(timeout=10)
        self.assertFalse(outcome.failed)
        self.assertIsNone(outcome.value)
        self.assertIsNone(outcome.exception)
        self.assertIs(State.COMPLETED, f.state)

    def test_ids_unique(self) -> None:
        """Every Handle receives a distinct identity."""
        handles = [start(len, args=((),)) for _ in range(10)]
        self.assertEqual(10, len({h.id for h in handles}))
        for h in handles:
            self.assertEqual(0, h.result())

    def test_state_transitions(self) -> None:
        """State moves from PENDING to exactly one terminal state."""
        gate = threading.Event()
        f = start(self.helper_gate, args=(gate,))
        self.assertIs(State.PENDING, f.state)
        self.assertFalse(f.done())
        gate.set()
        self.assertEqual("released", f.result(timeout=60))
        self.assertIs(State.COMPLETED, f.state)
        self.assertTrue(f.done())

        g = start(self.helper_raise, args=(ValueError, "boom"))
        g.wait(timeout=60)
        self.assertIs(State.FAILED, g.state)
        self.assertIn("failed", repr(g))

    def test_failure_wrapped(self) -> None:
        """Foreign exceptions surface as WorkerFailure, never at start."""
        f = start(self.helper_raise, args=(ValueError, "boom"))
        outcome = f.wait(timeout=60)
        self.assertTrue(outcome.failed)
        self.assertIsNone(outcome.value)
        self.assertIsInstance(outcome.exception, WorkerFailure)
        self.assertIsInstance(outcome.exception.__cause__, ValueError)
        with self.assertRaises(WorkerFailure) as cm:
            f.result()
        self.assertEqual(("boom",), cm.exception.__cause__.args)
        with self.assertRaises(WorkerFailure):
            f.result()  # Repeatedly

    def test_base_exception_completes(self) -> None:
        """Work raising e.g. SystemExit still reaches a terminal state."""
        f = start(self.helper_raise, args=(SystemExit, 3))
        outcome = f.wait(timeout=60)
        self.assertIs(State.FAILED, f.state)
        self.assertIsInstance(outcome.exception, WorkerFailure)
        self.assertIsInstance(outcome.exception.__cause__, SystemExit)
        with self.assertRaises(WorkerFailure):
            f.result()
        self.assertEqual(2, start(len, args=("ab",)).result(timeout=60))

    def test_overflow_not_wrapped(self) -> None:
        """Overflow propagates as itself rather than as a WorkerFailure."""
        f = start(self.helper_raise, args=(Overflow, "big"))
        with self.assertRaises(Overflow):
            f.result(timeout=60)
        g = start(self.helper_raise, args=(WorkerFailure, "already"))
        self.assertIsNone(g.wait(timeout=60).exception.__cause__)

    def test_end(self) -> None:
        """Method end() returns the Outcome once then AlreadyConsumed."""
        f = start(len, args=("abc",))
        self.assertEqual(3, f.end().unwrap())
        with self.assertRaises(AlreadyConsumed):
            f.end()
        self.assertEqual(3, f.result(), "wait() unaffected by end()")

    def test_end_failure(self) -> None:
        """Method end() reports errors from work exactly once, too."""
        f = start(self.helper_raise, args=(KeyError, "k"))
        outcome = f.end()
        self.assertIsInstance(outcome.exception, WorkerFailure)
        with self.assertRaises(AlreadyConsumed):
            f.end()

    def test_end_blocked_does_not_consume(self) -> None:
        """Timing out within end() leaves the Handle unconsumed."""
        gate = threading.Event()
        f = start(self.helper_gate, args=(gate,))
        with self.assert_elapsed(0), self.assertRaises(Blocked):
            f.end(timeout=0)
        gate.set()
        self.assertEqual("released", f.end().unwrap())
        with self.assertRaises(AlreadyConsumed):
            f.end()

    def test_nonblocking(self) -> None:
        """Ensure wait() and result() honor timeouts."""
        gate = threading.Event()
        delay = 0.1  # Impacts test runtime on the success path
        f = start(self.helper_gate, args=(gate,))
        with self.assert_elapsed(0), self.assertRaises(Blocked):
            f.wait(timeout=0)
        with self.assert_elapsed(delay), self.assertRaises(Blocked):
            f.wait(timeout=delay)
        with self.assert_elapsed(delay), self.assertRaises(Blocked):
            f.result(timeout=delay)
        gate.set()
        self.assertEqual("released", f.result(timeout=None))
        self.assertEqual("released", f.result(timeout=0))

    def test_polling(self) -> None:
        """Method done() reports False initially then True after delay."""
        delay = 0.5
        with self.assert_elapsed(delay):
            f = start(time.sleep, args=(delay,))
            self.assertFalse(f.done())
            while not f.done():
                time.sleep(0.01)
        self.assertIsNone(f.result(timeout=0))

    def test_concurrent_waiters(self) -> None:
        """Many threads waiting on one Handle all observe one Outcome."""
        gate = threading.Event()
        f = start(self.helper_gate, args=(gate,))
        seen = []  # type: typing.List[Outcome]
        lock = threading.Lock()

        def waiter() -> None:
            outcome = f.wait(timeout=60)
            with lock:
                seen.append(outcome)

        threads = [threading.Thread(target=waiter) for _ in range(8)]
        for thread in threads:
            thread.start()
        gate.set()
        for thread in threads:
            thread.join(timeout=60)
        self.assertEqual(8, len(seen))
        self.assertTrue(all(outcome is seen[0] for outcome in seen))

    def test_callback_after_done(self) -> None:
        """Callbacks registered after done run before when_done() returns."""
        f = start(len, args=((1,),))
        self.assertEqual(1, f.result())
        mutable = [0]
        threads = []  # type: typing.List[int]
        f.when_done(self.helper_callback, mutable, 0, 7)
        f.when_done(lambda o: threads.append(threading.get_ident()))
        self.assertEqual(7, mutable[0], "Callback after done")
        self.assertEqual([threading.get_ident()], threads)
        f.result()
        self.assertEqual(7, mutable[0], "Callbacks idempotent")

    def test_callback_before_done(self) -> None:
        """Callbacks registered while pending run on the worker thread."""
        gate, fired = threading.Event(), threading.Event()
        observed = {}  # type: typing.Dict[str, typing.Any]

        def record(outcome: Outcome) -> None:
            observed["thread"] = threading.get_ident()
            observed["state"] = f.state
            observed["value"] = outcome.value
            fired.set()

        f = start(self.helper_gate, args=(gate,))
        f.when_done(record)
        self.assertFalse(fired.is_set(), "Not before completion")
        gate.set()
        self.assertTrue(fired.wait(timeout=60))
        self.assertNotEqual(threading.get_ident(), observed["thread"])
        self.assertIs(State.COMPLETED, observed["state"])
        self.assertEqual("released", observed["value"])

    def test_callbacks_ordered(self) -> None:
        """Callbacks on one Handle run in registration order."""
        order = []  # type: typing.List[int]
        fired = threading.Event()
        gate = threading.Event()
        f = start(self.helper_gate, args=(gate,))
        for i in range(5):
            f.when_done(lambda o, i=i: order.append(i))
        f.when_done(lambda o: fired.set())
        gate.set()
        self.assertTrue(fired.wait(timeout=60))
        self.assertEqual([0, 1, 2, 3, 4], order)

    def test_start_callbacks(self) -> None:
        """Callbacks passed to start(...) see the terminal Outcome."""
        fired = threading.Event()
        outcomes = []  # type: typing.List[Outcome]

        def record(outcome: Outcome) -> None:
            outcomes.append(outcome)
            fired.set()

        f = start(len, args=("abcd",), callbacks=(record,))
        self.assertTrue(fired.wait(timeout=60))
        self.assertEqual(1, len(outcomes))
        self.assertIs(f.wait(), outcomes[0])

    def test_callback_raised(self) -> None:
        """Synchronous callbacks report errors via CallbackRaised."""
        f = start(len, args=("hello",))
        f.wait()
        with self.assertRaises(CallbackRaised) as cm:
            f.when_done(lambda o: self.helper_raise(ArithmeticError, "cb"))
        self.assertIsInstance(cm.exception.__cause__, ArithmeticError)
        self.assertEqual(5, f.result(), "Result still available")

    def test_callback_raised_on_worker(self) -> None:
        """Worker-thread callback errors are logged and others still run."""
        gate, fired = threading.Event(), threading.Event()
        f = start(self.helper_gate, args=(gate,))
        f.when_done(lambda o: self.helper_raise(ValueError, "bad"))
        f.when_done(lambda o: fired.set())
        with self.assertLogs("rendezvous.impl", level="ERROR") as logs:
            gate.set()
            self.assertTrue(fired.wait(timeout=60))
        self.assertEqual(1, len(logs.records))
        self.assertEqual("released", f.result())

    def test_executor(self) -> None:
        """Work may be run on a caller-provided executor."""
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            f = start(len, args=((1, 2),), executor=pool)
            self.assertEqual(2, f.result(timeout=60))
        self.assertIs(shared_executor(), shared_executor())

    def test_duplication(self) -> None:
        """Copying and pickling of Handles is explicitly disallowed."""
        f = start(len, args=((1, 2, 3),))
        with self.assertRaises(NotImplementedError):
            copy.copy(f)
        with self.assertRaises(NotImplementedError):
            copy.deepcopy(f)
        with self.assertRaises(NotImplementedError):
            pickle.dumps(f)
        self.assertEqual(3, f.result())

    def test_as_future(self) -> None:
        """Bridged concurrent.futures.Future carries values and errors."""
        future = as_future(start(len, args=((1, 2, 3),)))
        self.assertEqual(3, future.result(timeout=60))
        future = as_future(start(self.helper_raise, args=(TypeError, "x")))
        self.assertIsInstance(future.exception(timeout=60), WorkerFailure)

    def test_handle_constructed_pending(self) -> None:
        """A bare Handle stays PENDING with no work behind it."""
        h = Handle()  # type: Handle[int]
        self.assertIs(State.PENDING, h.state)
        with self.assertRaises(Blocked):
            h.wait(timeout=0)


class OutcomeTest(unittest.TestCase):
    """Unit tests for the Returned/Raised specializations of Outcome."""

    def test_returned(self) -> None:
        outcome = Returned(5)  # type: Outcome[int]
        self.assertFalse(outcome.failed)
        self.assertEqual(5, outcome.value)
        self.assertEqual(5, outcome.unwrap())
        self.assertIsNone(outcome.exception)

    def test_returned_exception_instance(self) -> None:
        """An Exception returned, rather than raised, is not a failure."""
        error = ValueError("returned")
        outcome = Returned(error)
        self.assertFalse(outcome.failed)
        self.assertIs(error, outcome.unwrap())

    def test_raised(self) -> None:
        error = ValueError("raised")
        outcome = Raised(error)  # type: Outcome[int]
        self.assertTrue(outcome.failed)
        self.assertIs(error, outcome.exception)
        self.assertIsNone(outcome.value)
        with self.assertRaises(ValueError):
            outcome.unwrap()


class CallerContextTest(unittest.TestCase):
    """Unit tests for marshaling callbacks onto a pumping thread."""

    def test_empty(self) -> None:
        """Pumping nothing returns zero or raises Blocked after timeout."""
        context = CallerContext()
        self.assertFalse(context.pending())
        self.assertEqual(0, context.pump())
        with self.assertRaises(Blocked):
            context.pump(timeout=0.05)

    def test_post_and_pump(self) -> None:
        """Posted callbacks run only when and where pump() is called."""
        context = CallerContext()
        seen = []  # type: typing.List[int]
        context.post(seen.append, 1)
        context.post(seen.append, 2)
        self.assertEqual([], seen)
        self.assertTrue(context.pending())
        self.assertEqual(2, context.pump())
        self.assertEqual([1, 2], seen)

    def test_pump_raised(self) -> None:
        """Errors stop pump() leaving remaining callbacks for next time."""
        context = CallerContext()
        seen = []  # type: typing.List[int]
        context.post(HandleTest.helper_raise, RuntimeError, "first")
        context.post(seen.append, 2)
        with self.assertRaises(CallbackRaised) as cm:
            context.pump()
        self.assertIsInstance(cm.exception.__cause__, RuntimeError)
        self.assertEqual([], seen)
        self.assertEqual(1, context.pump())
        self.assertEqual([2], seen)

    def test_when_done_context(self) -> None:
        """Completion is observed on the thread pumping the context."""
        context = CallerContext()
        gate = threading.Event()
        observed = []  # type: typing.List[typing.Tuple[int, typing.Any]]
        f = start(HandleTest.helper_gate, args=(gate,))
        f.when_done(
            lambda o: observed.append((threading.get_ident(), o.value)),
            context=context,
        )
        gate.set()
        f.wait(timeout=60)
        self.assertEqual(1, context.pump(timeout=60))
        self.assertEqual([(threading.get_ident(), "released")], observed)

    def test_when_done_context_after_done(self) -> None:
        """Already done Handles dispatch immediately, context or not."""
        context = CallerContext()
        f = start(len, args=("ab",))
        f.wait()
        seen = []  # type: typing.List[int]
        f.when_done(lambda o: seen.append(o.value), context=context)
        self.assertEqual([2], seen)
        self.assertFalse(context.pending())


if __name__ == "__main__":
    unittest.main()
