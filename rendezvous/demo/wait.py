# Copyright (C) 2019-2026 Rhys Ulerich <rhys.ulerich@gmail.com>
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at http://mozilla.org/MPL/2.0/.
"""Demo: Wait-until-done rendezvous on file-read-shaped work."""
import os
import tempfile

from ..impl import AlreadyConsumed, start
from ..work import read_file

if __name__ == "__main__":
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "data.txt")
        with open(path, "wb") as f:
            f.write(b"The quick brown fox jumps over the lazy dog.\n" * 100)

        handle = start(read_file, args=(path,))
        print("Doing something important meanwhile")

        # Blocks until the read finishes, exactly once
        data = handle.end().unwrap()
        print("1: Read {} bytes (wait-until-done)".format(len(data)))
        assert len(data) == 4500

        # A second end() is a programming error
        try:
            handle.end()
            assert False, "Should have raised AlreadyConsumed"
        except AlreadyConsumed:
            pass

        # Whereas wait() may be repeated freely
        assert handle.wait().unwrap() is data

    print("wait: OK")
