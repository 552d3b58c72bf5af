# Copyright (C) 2019-2026 Rhys Ulerich <rhys.ulerich@gmail.com>
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at http://mozilla.org/MPL/2.0/.
"""Demo: Exception handling from workers and callbacks."""
from ..impl import CallbackRaised, Overflow, WorkerFailure, start
from ..work import report_sum, run_sum, sum_async


def raise_error(message: str) -> None:
    raise ValueError(message)


def bad_callback(outcome) -> None:
    raise RuntimeError("callback failed")


if __name__ == "__main__":
    # Overflow is detected rather than silently wrapping
    try:
        run_sum(4294967296)
        assert False, "Should have raised Overflow"
    except Overflow as e:
        print("Synchronous: {}".format(e))

    # Errors in work surface from end(), not from start()
    handle = sum_async(4294967296)
    try:
        handle.end().unwrap()
        assert False, "Should have raised Overflow"
    except Overflow as e:
        print("Asynchronous: {}".format(e))

    # Anything else is wrapped in WorkerFailure
    future_err = start(raise_error, args=("oops",))
    try:
        future_err.result()
        assert False, "Should have raised WorkerFailure"
    except WorkerFailure as e:
        assert isinstance(e.__cause__, ValueError)
        assert "oops" in str(e.__cause__)

    # Fire-and-forget reporting prints the error and carries on
    report_sum(1 << 40).wait()

    # Callback exceptions on the calling thread are reported via CallbackRaised
    future_cb = start(len, args=("hello",))
    future_cb.wait()
    try:
        future_cb.when_done(bad_callback)
        assert False, "Should have raised CallbackRaised"
    except CallbackRaised as e:
        assert isinstance(e.__cause__, RuntimeError)

    # After callback error is reported, result is still available
    assert future_cb.result() == 5

    print("errors: OK")
