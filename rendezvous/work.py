# Copyright (C) 2019-2026 Rhys Ulerich <rhys.ulerich@gmail.com>
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at http://mozilla.org/MPL/2.0/.
"""Sample work shaped like the call-and-callback and event-based demos."""
import concurrent.futures
import logging
import time
import typing

from .impl import Handle, Outcome, Overflow, WorkerFailure, start
from .registry import Listener, TaskRegistry

_LOGGER = logging.getLogger(__name__)

# Largest value representable by a signed 64-bit integer
INT64_MAX = (1 << 63) - 1


def run_sum(n: int) -> int:
    """
    Sum the integers 1 through n, inclusive, as a signed 64-bit integer.

    Returns 0 whenever n < 1.  Raises Overflow instead of wrapping around.
    """
    if n < 1:
        return 0
    # Closed form equals checked accumulation because partial sums increase
    total = n * (n + 1) // 2
    if total > INT64_MAX:
        raise Overflow("Sum of 1..{} exceeds {}".format(n, INT64_MAX))
    return total


def sum_async(
    n: int, executor: typing.Optional[concurrent.futures.Executor] = None
) -> Handle[int]:
    """Start run_sum(n) off the calling thread."""
    return start(run_sum, args=(n,), executor=executor)


def report_sum(
    n: int,
    emit: typing.Callable[[str], typing.Any] = print,
    executor: typing.Optional[concurrent.futures.Executor] = None,
) -> Handle[int]:
    """
    Start run_sum(n) in "fire and forget" style, emitting the outcome.

    The callback itself calls end() so the caller need not.  Consequently,
    calling end() on the returned Handle raises AlreadyConsumed.
    """

    def on_done(_: Outcome[int], handle: Handle[int]) -> None:
        try:
            emit("Sum: {}".format(handle.end().unwrap()))
        except Overflow:
            emit("Overflow error")
        except WorkerFailure as e:
            emit("Error: {}".format(e))

    handle = sum_async(n, executor=executor)
    handle.when_done(on_done, handle)
    return handle


def run_loop(
    message: str,
    iterations: int = 10,
    delay: float = 3.0,
    emit: typing.Callable[[str], typing.Any] = print,
) -> None:
    """Stand-in for slow work: sleep then emit "message i", repeatedly."""
    for i in range(iterations):
        time.sleep(delay)
        _LOGGER.debug("Loop %r at iteration %d", message, i)
        emit("{} {}".format(message, i))


def read_file(path: str) -> bytes:
    """Read the entirety of some file in binary mode."""
    with open(path, "rb") as f:
        return f.read()


class LoopService:
    """
    Event-based facade over run_loop(...).

    Invoke run(...) to block or run_async(...) to launch and later hear
    about completion through subscribe(...)-d listeners.  Distinct keys
    permit multiple concurrent invocations.
    """

    def __init__(
        self,
        registry: typing.Optional[TaskRegistry] = None,
        iterations: int = 10,
        delay: float = 3.0,
        emit: typing.Callable[[str], typing.Any] = print,
    ) -> None:
        self.registry = TaskRegistry() if registry is None else registry
        self.iterations = iterations
        self.delay = delay
        self.emit = emit

    def subscribe(self, listener: Listener) -> None:
        """Register listener(Completed) raised when each run_async finishes."""
        self.registry.subscribe(listener)

    def run(self, message: str) -> None:
        """Run the loop synchronously on the calling thread."""
        run_loop(message, self.iterations, self.delay, self.emit)

    def run_async(self, message: str, key: typing.Hashable) -> Handle[None]:
        """Run the loop off the calling thread.  Key must be unique."""
        return self.registry.start(
            key,
            run_loop,
            args=(message, self.iterations, self.delay, self.emit),
        )
