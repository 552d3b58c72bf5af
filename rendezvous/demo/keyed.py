# Copyright (C) 2019-2026 Rhys Ulerich <rhys.ulerich@gmail.com>
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at http://mozilla.org/MPL/2.0/.
"""Demo: Event-based pattern running keyed work concurrently."""
import threading

from ..impl import DuplicateKey
from ..registry import Completed
from ..work import LoopService

if __name__ == "__main__":
    finished = []  # type: list
    all_done = threading.Event()

    def on_completed(completed: Completed) -> None:
        print("{} completed".format(completed.key))
        finished.append(completed.key)
        if len(finished) == 2:
            all_done.set()

    service = LoopService(iterations=3, delay=0.2)
    service.subscribe(on_completed)

    # The same operation may be in flight many times under distinct keys
    service.run_async("Async 1", "userstate: Async1")
    service.run_async("Async 2", "userstate: Async2")

    # But never twice under one key
    try:
        service.run_async("Async 1 again", "userstate: Async1")
        assert False, "Should have raised DuplicateKey"
    except DuplicateKey:
        pass

    print("It's all started, folks!")
    assert all_done.wait(timeout=60)
    assert len(service.registry) == 0

    print("keyed: OK")
