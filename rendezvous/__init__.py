# Copyright (C) 2019-2026 Rhys Ulerich <rhys.ulerich@gmail.com>
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at http://mozilla.org/MPL/2.0/.
"""
Rendezvous with work running off the calling thread!

Two classic asynchronous idioms are provided atop one primitive:

 * First, call-and-callback: start(...) returns a Handle which the caller
   may wait(...) on, poll via done(), or observe through when_done(...).
 * Second, event-based: a TaskRegistry launches keyed work, rejects
   duplicate in-flight keys, and broadcasts one Completed per key.
 * Every Handle reaches exactly one terminal Outcome which is delivered
   exactly once to each registered callback.
 * Exceptions raised by work are never raised on the starting thread.
   They surface only from wait(...), end(...), or result(...) and within
   the Outcome given to callbacks.  Unobserved failures are dropped.
 * Callbacks run on the worker thread unless a CallerContext is given.
 * Lastly, no cancellation is supported.

Implementation passes both PEP 8 (per flake8) and type-hinting (per mypy).
"""
from .impl import (
    AlreadyConsumed,
    Blocked,
    CallbackRaised,
    CallerContext,
    DuplicateKey,
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
from .registry import Completed, TaskRegistry
from .work import (
    LoopService,
    read_file,
    report_sum,
    run_loop,
    run_sum,
    sum_async,
)

__all__ = [
    "AlreadyConsumed",
    "Blocked",
    "CallbackRaised",
    "CallerContext",
    "Completed",
    "DuplicateKey",
    "Handle",
    "LoopService",
    "Outcome",
    "Overflow",
    "Raised",
    "Returned",
    "State",
    "TaskRegistry",
    "WorkerFailure",
    "as_future",
    "read_file",
    "report_sum",
    "run_loop",
    "run_sum",
    "shared_executor",
    "start",
    "sum_async",
]
