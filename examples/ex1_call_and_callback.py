# Copyright (C) 2019-2026 Rhys Ulerich <rhys.ulerich@gmail.com>
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at http://mozilla.org/MPL/2.0/.
"""Example 1 shows the wait, polling, and callback rendezvous styles."""
import os
import sys
import tempfile
import time
from logging import basicConfig, info, DEBUG

from rendezvous import (
    Outcome,
    as_future,
    read_file,
    report_sum,
    start,
    sum_async,
)


def main(path: str) -> None:
    # Wait-until-done: end() blocks and must be called exactly once
    handle = start(read_file, args=(path,))
    info("Doing important things here")
    info("1: Read %d bytes (wait-until-done)", len(handle.end().unwrap()))

    # Polling: done() never blocks
    handle = start(read_file, args=(path,))
    while not handle.done():
        info("Important task here")
        time.sleep(0.01)
    info("2: Read %d bytes (polling)", len(handle.end().unwrap()))

    # Callback: registered before work begins so it runs on the worker
    handle = start(read_file, args=(path,), callbacks=[callback_report])
    info("Important task here")
    handle.wait()

    # Fire-and-forget: the callback itself ends the Handle
    report_sum(1000000000, emit=info).wait()
    report_sum(1 << 32, emit=info).wait()

    # Handle bridged onto a concurrent.futures.Future
    future = as_future(sum_async(1000000000))
    info("Doing things while the operation runs")
    info("Result: %d", future.result())


def callback_report(outcome: Outcome) -> None:
    """Report how much data was read."""
    info("3: Read %d bytes (callback)", len(outcome.unwrap()))


if __name__ == "__main__":
    basicConfig(
        level=DEBUG,
        format="%(asctime)s - %(threadName)s - %(levelname)s - %(message)s",
    )
    if len(sys.argv) > 1:
        main(sys.argv[1])
    else:
        with tempfile.TemporaryDirectory() as tmp:
            name = os.path.join(tmp, "TextFile1.txt")
            with open(name, "w") as f:
                f.write("Lorem ipsum dolor sit amet.\n" * 64)
            main(name)
