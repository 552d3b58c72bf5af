# Copyright (C) 2019-2026 Rhys Ulerich <rhys.ulerich@gmail.com>
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at http://mozilla.org/MPL/2.0/.
"""Demo: Polling rendezvous while the caller keeps busy."""
import time

from ..impl import Blocked, start
from ..work import run_sum


def slow_sum(n: int, delay: float) -> int:
    time.sleep(delay)
    return run_sum(n)


if __name__ == "__main__":
    handle = start(slow_sum, args=(100, 1.0))

    # Poll without blocking: done() returns False
    assert handle.done() is False

    # wait() with timeout raises Blocked
    try:
        handle.wait(timeout=0)
        assert False, "Should have raised Blocked"
    except Blocked:
        pass

    # Do other things until done
    polls = 0
    while not handle.done():
        polls += 1
        time.sleep(0.05)
    print("2: Sum {} after {} polls (polling)".format(handle.result(), polls))
    assert handle.result() == 5050
    assert polls > 0

    print("polling: OK")
