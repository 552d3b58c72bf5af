# Copyright (C) 2019-2026 Rhys Ulerich <rhys.ulerich@gmail.com>
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at http://mozilla.org/MPL/2.0/.
"""Example 2 shows the event-based pattern with concurrent keyed work."""
from logging import basicConfig, info, DEBUG

from rendezvous import CallerContext, Completed, LoopService, TaskRegistry


def main() -> None:
    # Completions are marshaled back onto this thread by pumping
    context = CallerContext()
    service = LoopService(
        TaskRegistry(context=context), iterations=5, delay=0.5, emit=info
    )
    service.subscribe(on_completed)

    # The same operation may be launched concurrently under distinct keys
    service.run_async("Async 1", "userstate: Async1")
    service.run_async("Async 2", "userstate: Async2")
    info("It's all started, folks!")

    pumped = 0
    while pumped < 2:
        pumped += context.pump(timeout=None)


def on_completed(completed: Completed) -> None:
    """Report which keyed invocation finished."""
    info("%s done", completed.key)


if __name__ == "__main__":
    basicConfig(
        level=DEBUG,
        format="%(asctime)s - %(threadName)s - %(levelname)s - %(message)s",
    )
    main()
