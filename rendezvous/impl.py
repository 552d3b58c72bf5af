# Copyright (C) 2019-2026 Rhys Ulerich <rhys.ulerich@gmail.com>
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at http://mozilla.org/MPL/2.0/.
"""Implementation of Handle, CallerContext, and related classes."""
import abc
import concurrent.futures
import enum
import itertools
import logging
import os
import queue
import threading
import types
import typing

T = typing.TypeVar("T")

_LOGGER = logging.getLogger(__name__)


class Blocked(Exception):
    """Reports that Handle.wait(...) or CallerContext.pump(...) timed out."""

    pass


class CallbackRaised(Exception):
    """
    Reports an Exception raised from a callback run on the calling thread.

    Instances of this type must have non-None __cause__ members (see PEP 3154).
    The __cause__ member will be the Exception raised by client code.

    Raised by Handle.when_done(...) when the Handle was already done and by
    CallerContext.pump(...).  In the latter case the caller MAY re-invoke
    pump(...) to continue processing any additional callbacks.
    """

    pass


class AlreadyConsumed(Exception):
    """Reports Handle.end(...) was invoked more than once."""

    pass


class DuplicateKey(KeyError):
    """Reports a key is already in flight within some TaskRegistry."""

    pass


class Overflow(OverflowError):
    """Reports a result exceeding the signed 64-bit range."""

    pass


class WorkerFailure(Exception):
    """
    Reports work raised something outside this module's error taxonomy.

    Instances have a non-None __cause__ member holding what work raised.
    """

    pass


class Outcome(abc.ABC, typing.Generic[T]):
    """Tracks whether a value was returned or raised by some work."""

    __slots__ = ()

    @property
    @abc.abstractmethod
    def failed(self) -> bool:
        """True whenever unwrap() would raise."""
        raise NotImplementedError()

    @property
    def value(self) -> typing.Optional[T]:
        """The returned value or None when failed."""
        return None

    @property
    def exception(self) -> typing.Optional[BaseException]:
        """The raised Exception or None when not failed."""
        return None

    @abc.abstractmethod
    def unwrap(self) -> T:
        """Raise any wrapped Exception otherwise return some result."""
        raise NotImplementedError()


class Returned(Outcome[T]):
    """Specialization of Outcome for when a result is available."""

    __slots__ = ("_value",)

    def __init__(self, value: T) -> None:
        self._value = value

    def __repr__(self) -> str:
        return "Returned({!r})".format(self._value)

    @property
    def failed(self) -> bool:
        return False

    @property
    def value(self) -> typing.Optional[T]:
        return self._value

    def unwrap(self) -> T:
        return self._value


class Raised(Outcome[T]):
    """Specialization of Outcome for when an Exception has been raised."""

    __slots__ = ("_raised",)

    def __init__(self, raised: BaseException) -> None:
        assert isinstance(raised, Exception), type(raised)
        self._raised = raised

    def __repr__(self) -> str:
        return "Raised({!r})".format(self._raised)

    @property
    def failed(self) -> bool:
        return True

    @property
    def exception(self) -> typing.Optional[BaseException]:
        return self._raised

    def unwrap(self) -> typing.NoReturn:
        raise self._raised


class State(enum.Enum):
    """Lifecycle of a Handle.  Only PENDING is non-terminal."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class CallerContext:
    """
    Marshals callbacks onto whichever thread calls pump().

    Pass an instance as when_done(..., context=...) so that a completion
    is observed on the thread that owns the context instead of on the
    worker thread which finished the work.
    """

    __slots__ = ("_queue",)

    def __init__(self) -> None:
        self._queue = queue.SimpleQueue()  # type: queue.SimpleQueue

    def post(self, fn: typing.Callable, *args, **kwargs) -> None:
        """Enqueue fn(*args, **kwargs) for a later pump().  Never blocks."""
        self._queue.put((fn, args, kwargs))

    def pending(self) -> bool:
        """Are any posted callbacks awaiting pump()?"""
        return not self._queue.empty()

    def pump(self, timeout: typing.Optional[float] = 0) -> int:
        """
        Run posted callbacks on the calling thread returning how many ran.

        Waits up to timeout seconds for the first callback, with None
        meaning to block indefinitely, then drains whatever is queued.
        Raises Blocked when nothing arrived before a non-zero timeout.
        May raise CallbackRaised from at most one callback.
        """
        count = 0
        try:
            item = self._queue.get(block=timeout != 0, timeout=timeout)
        except queue.Empty:
            if timeout == 0:
                return 0
            raise Blocked()
        while True:
            fn, args, kwargs = item
            count += 1
            try:
                fn(*args, **kwargs)
            except Exception as e:
                raise CallbackRaised() from e
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return count


# Process-wide worker pool lazily created by shared_executor()
_EXECUTOR = None  # type: typing.Optional[concurrent.futures.Executor]
_EXECUTOR_LOCK = threading.Lock()


def shared_executor() -> concurrent.futures.Executor:
    """
    The process-wide worker pool used whenever no executor is provided.

    Bounded at the ThreadPoolExecutor default computed from the number of
    usable CPUs for the current process.  Lives until interpreter exit.
    """
    global _EXECUTOR
    with _EXECUTOR_LOCK:
        if _EXECUTOR is None:
            workers = min(32, len(os.sched_getaffinity(0)) + 4)
            _LOGGER.debug("Starting shared pool with %d workers", workers)
            _EXECUTOR = concurrent.futures.ThreadPoolExecutor(
                max_workers=workers, thread_name_prefix="rendezvous"
            )
        return _EXECUTOR


class Handle(typing.Generic[T]):
    """
    Handle instances are obtained by start(...)-ing work.

    Handles report if work is done(), wait(...) for its Outcome, and
    may additionally be used to register callbacks issued at completion.
    Handles can be neither copied nor pickled.
    """

    __slots__ = (
        "_id",
        "_condition",
        "_outcome",
        "_callbacks",
        "_consumed",
    )

    _ids = itertools.count(1)

    def __init__(self) -> None:
        """A PENDING instance expecting exactly one call to _complete(...)."""
        self._id = next(Handle._ids)
        self._condition = threading.Condition(threading.Lock())

        # Becomes non-None exactly once after work finishes
        self._outcome = None  # type: typing.Optional[Outcome[T]]

        # Populated by calls to when_done(...) while PENDING
        self._callbacks = []  # type: typing.List[typing.Tuple]

        # Becomes True after first successful end(...)
        self._consumed = False

    def __repr__(self) -> str:
        return "<Handle {} {}>".format(self._id, self.state.value)

    def __copy__(self) -> typing.NoReturn:
        """Disallow copying as duplicates cannot sensibly share one result."""
        # In particular, which copy would be end(...)-ed?
        raise NotImplementedError("Handles cannot be copied.")

    def __reduce__(self) -> typing.NoReturn:
        """Disallow pickling as duplicates cannot sensibly share one result."""
        raise NotImplementedError("Handles cannot be pickled.")

    @property
    def id(self) -> int:
        """Opaque identity unique within this process."""
        return self._id

    @property
    def state(self) -> State:
        outcome = self._outcome
        if outcome is None:
            return State.PENDING
        return State.FAILED if outcome.failed else State.COMPLETED

    def done(self) -> bool:
        """Is an Outcome ready?  Never blocks."""
        return self._outcome is not None

    def wait(self, timeout: typing.Optional[float] = None) -> Outcome[T]:
        """
        Obtain the Outcome when ready.  Raises Blocked if unavailable.

        Timeout is given in seconds with None meaning to block indefinitely.
        May be called any number of times, always returning the same Outcome.
        """
        with self._condition:
            if not self._condition.wait_for(self.done, timeout):
                raise Blocked()
        assert self._outcome is not None
        return self._outcome

    def result(self, timeout: typing.Optional[float] = None) -> T:
        """Obtain result when ready, raising whatever the work raised."""
        return self.wait(timeout).unwrap()

    def end(self, timeout: typing.Optional[float] = None) -> Outcome[T]:
        """
        Obtain the Outcome exactly once.  Raises AlreadyConsumed thereafter.

        Otherwise identical to wait(...).  Raising Blocked does not count.
        """
        outcome = self.wait(timeout)
        with self._condition:
            if self._consumed:
                raise AlreadyConsumed("Handle {}".format(self._id))
            self._consumed = True
        return outcome

    def when_done(
        self,
        fn: typing.Callable,
        *args,
        context: typing.Optional[CallerContext] = None,
        __internal: bool = False,
        **kwargs
    ) -> None:
        """
        Register fn(outcome, *args, **kwargs) to run once this Handle is done.

        When already done, immediately invokes fn on the calling thread and
        may raise CallbackRaised from this new callback.  Otherwise fn runs
        on the worker thread completing this Handle, after any earlier
        registrations.  When context is provided, fn is instead posted there.
        """
        with self._condition:
            if self._outcome is None:
                self._callbacks.append((__internal, fn, args, kwargs, context))
                return
            outcome = self._outcome

        # Already done so dispatch synchronously on the calling thread
        if __internal:
            fn(outcome, *args, **kwargs)
            return
        try:
            fn(outcome, *args, **kwargs)
        except Exception as e:
            raise CallbackRaised() from e

    def _complete(self, outcome: Outcome[T]) -> None:
        """Transition to a terminal state then issue pending callbacks."""
        assert isinstance(outcome, Outcome), type(outcome)
        with self._condition:
            assert self._outcome is None, "Completed twice"
            self._outcome = outcome
            callbacks, self._callbacks = self._callbacks, []
            self._condition.notify_all()

        # Issued outside the lock so that callbacks may call back in.
        # No caller is present to receive any Exception, so only log it.
        for _, fn, args, kwargs, context in callbacks:
            if context is not None:
                context.post(fn, outcome, *args, **kwargs)
                continue
            try:
                fn(outcome, *args, **kwargs)
            except Exception:
                _LOGGER.exception("Callback %r raised for %r", fn, self)

    def _run(
        self,
        fn: typing.Callable[..., T],
        args: typing.Iterable,
        kwargs: typing.Mapping[str, typing.Any],
    ) -> None:
        """Entry point for workers to run fn(...) due to some start(...)."""
        # Outcome usage tracks whether a value was returned or raised
        # in degenerate case where client code returns an Exception.
        try:
            outcome = Returned(fn(*args, **kwargs))  # type: Outcome[T]
        except (Overflow, WorkerFailure) as e:
            outcome = Raised(e)
        except Exception as e:
            outcome = Raised(self._wrap_failure(e))
        except BaseException as e:
            # E.g. SystemExit.  Complete first so no waiter hangs forever,
            # then let the executor's own machinery see the original.
            self._complete(Raised(self._wrap_failure(e)))
            raise
        _LOGGER.debug("Handle %d finished with %r", self._id, outcome)
        self._complete(outcome)

    @staticmethod
    def _wrap_failure(raised: BaseException) -> WorkerFailure:
        """WorkerFailure whose __cause__ is whatever work raised."""
        failure = WorkerFailure("{}: {}".format(type(raised).__name__, raised))
        failure.__cause__ = raised
        return failure


def start(
    fn: typing.Callable[..., T],
    *,
    args: typing.Iterable = (),
    kwargs: typing.Mapping[str, typing.Any] = types.MappingProxyType({}),
    executor: typing.Optional[concurrent.futures.Executor] = None,
    callbacks: typing.Iterable[typing.Callable] = ()
) -> Handle[T]:
    """
    Start running fn(*args, **kwargs) off the calling thread.

    Returns a PENDING Handle immediately.  Work runs on executor, defaulting
    to shared_executor().  Anything fn raises is captured into the Handle.
    Each of callbacks is registered via when_done(...) before work begins
    so that each is guaranteed to run on the worker thread.
    """
    assert fn is not None
    handle = Handle()  # type: Handle[T]
    for callback in callbacks:
        handle.when_done(callback)
    launch(handle, fn, args=args, kwargs=kwargs, executor=executor)
    return handle


def launch(
    handle: Handle[T],
    fn: typing.Callable[..., T],
    *,
    args: typing.Iterable = (),
    kwargs: typing.Mapping[str, typing.Any] = types.MappingProxyType({}),
    executor: typing.Optional[concurrent.futures.Executor] = None
) -> None:
    """Schedule fn(*args, **kwargs) to complete a freshly constructed Handle.

    Lower-level than start(...) for callers, e.g. TaskRegistry, that must
    register callbacks on the Handle before any work may possibly finish.
    """
    assert handle.state is State.PENDING, "Handles are launched once"
    if executor is None:
        executor = shared_executor()
    executor.submit(handle._run, fn, tuple(args), dict(kwargs))


def as_future(handle: Handle[T]) -> "concurrent.futures.Future[T]":
    """Bridge a Handle onto a concurrent.futures.Future."""
    future = concurrent.futures.Future()  # type: concurrent.futures.Future
    future.set_running_or_notify_cancel()
    handle.when_done(_bridge_outcome, future, _Handle__internal=True)
    return future


def _bridge_outcome(
    outcome: Outcome[T], future: "concurrent.futures.Future[T]"
) -> None:
    """Transfer a terminal Outcome to a c.f.Future."""
    if outcome.failed:
        future.set_exception(outcome.exception)
    else:
        future.set_result(outcome.value)  # type: ignore
