# Copyright (C) 2019-2026 Rhys Ulerich <rhys.ulerich@gmail.com>
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at http://mozilla.org/MPL/2.0/.
"""Demo: Callbacks fire when work completes."""
import threading

from ..impl import CallerContext, Outcome, start
from ..work import run_sum


def record_completion(outcome: Outcome, results: list, index: int) -> None:
    results[index] = outcome.unwrap()


if __name__ == "__main__":
    results = [0, 0, 0, 0]
    finished = threading.Event()

    # Register callbacks before completion: they run on the worker thread
    handle = start(run_sum, args=(10,))
    handle.when_done(record_completion, results, 0)
    handle.when_done(record_completion, results, 1)
    handle.when_done(lambda outcome: finished.set())

    # Wait for completion
    assert handle.result() == 55
    assert finished.wait(timeout=60)
    assert results[:2] == [55, 55]

    # Callbacks registered after completion fire immediately
    handle.when_done(record_completion, results, 2)
    assert results[2] == 55

    # Or marshal completion back onto this thread via a CallerContext
    context = CallerContext()
    other = start(run_sum, args=(100,))
    other.when_done(record_completion, results, 3, context=context)
    if results[3] == 0:
        # Otherwise already done, so the callback ran immediately
        context.pump(timeout=None)
    assert results[3] == 5050
    print("3: Sums {} (callback)".format(results))

    print("callbacks: OK")
