# Copyright (C) 2019-2026 Rhys Ulerich <rhys.ulerich@gmail.com>
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at http://mozilla.org/MPL/2.0/.
"""A registry running the same kind of work under distinct caller keys."""
import concurrent.futures
import logging
import threading
import types
import typing

from .impl import CallerContext, DuplicateKey, Handle, Outcome, launch

T = typing.TypeVar("T")

_LOGGER = logging.getLogger(__name__)


class Completed(typing.NamedTuple):
    """Broadcast to TaskRegistry listeners once some keyed work finishes."""

    key: typing.Hashable
    outcome: Outcome


Listener = typing.Callable[[Completed], typing.Any]


class TaskRegistry:
    """Tracks in-flight Handles by a caller-supplied, unique key.

    Many keyed operations may be in flight at once.  Each fires one
    Completed notification to every subscribed listener.  Before that
    notification is issued, and before the Handle reports done(), the key
    is forgotten.  So listeners, or callers having observed completion,
    may immediately start(...) new work reusing the same key.

    Removal is atomic with respect to other registry operations, but a
    start(...) racing the completion of the same key from another thread
    may or may not observe DuplicateKey.
    """

    __slots__ = ("_executor", "_context", "_lock", "_entries", "_listeners")

    def __init__(
        self,
        executor: typing.Optional[concurrent.futures.Executor] = None,
        context: typing.Optional[CallerContext] = None,
    ) -> None:
        """
        Run work on executor, defaulting to the process-wide shared pool.

        When context is provided, Completed notifications are posted there
        rather than issued on the worker thread which finished the work.
        """
        self._executor = executor
        self._context = context
        self._lock = threading.Lock()
        self._entries = {}  # type: typing.Dict[typing.Hashable, Handle]
        self._listeners = []  # type: typing.List[Listener]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: typing.Hashable) -> bool:
        with self._lock:
            return key in self._entries

    def get(self, key: typing.Hashable) -> typing.Optional[Handle]:
        """The in-flight Handle for key or None when key is not in flight."""
        with self._lock:
            return self._entries.get(key)

    def keys(self) -> typing.List[typing.Hashable]:
        """A snapshot of the keys currently in flight."""
        with self._lock:
            return list(self._entries)

    def subscribe(self, listener: Listener) -> None:
        """Register listener(Completed) for every subsequent completion."""
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        """Undo one subscribe(...).  Raises ValueError when not subscribed."""
        with self._lock:
            self._listeners.remove(listener)

    def start(
        self,
        key: typing.Hashable,
        fn: typing.Callable[..., T],
        *,
        args: typing.Iterable = (),
        kwargs: typing.Mapping[str, typing.Any] = types.MappingProxyType({}),
    ) -> Handle[T]:
        """Start fn(*args, **kwargs) tracked under key.

        Raises DuplicateKey, without running fn, when key is in flight.
        """
        handle = Handle()  # type: Handle[T]
        with self._lock:
            if key in self._entries:
                raise DuplicateKey(key)
            self._entries[key] = handle

        # Registered before launch(...) so that listeners hear of completion
        # before any callbacks which the caller registers on the Handle.
        handle.when_done(self._finished, key, _Handle__internal=True)
        try:
            launch(
                handle,
                self._run_keyed,
                args=(key, handle, fn, tuple(args), dict(kwargs)),
                executor=self._executor,
            )
        except Exception:
            # Unwinding the entry on unexpected errors, e.g. pool shutdown
            with self._lock:
                self._entries.pop(key, None)
            raise
        _LOGGER.debug("Started %r as %r", key, handle)
        return handle

    def _run_keyed(
        self,
        key: typing.Hashable,
        handle: Handle[T],
        fn: typing.Callable[..., T],
        args: typing.Tuple,
        kwargs: typing.Dict[str, typing.Any],
    ) -> T:
        """Run fn(...) then forget key before handle may report done()."""
        try:
            return fn(*args, **kwargs)
        finally:
            with self._lock:
                if self._entries.get(key) is handle:
                    del self._entries[key]

    def _finished(self, outcome: Outcome, key: typing.Hashable) -> None:
        """Notify every listener of the Completed work."""
        with self._lock:
            listeners = tuple(self._listeners)

        completed = Completed(key, outcome)
        if self._context is not None:
            for listener in listeners:
                self._context.post(listener, completed)
            return
        for listener in listeners:
            try:
                listener(completed)
            except Exception:
                _LOGGER.exception("Listener %r raised for %r", listener, key)
