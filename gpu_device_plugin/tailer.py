"""Follow the contents of a file with ``tail -f``."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from typing import IO


@dataclass
class Tailer:
    """Streams a file to stdout/stderr until stopped."""

    filename: str
    stdout: IO | int | None = None
    stderr: IO | int | None = None
    _process: subprocess.Popen | None = field(default=None, init=False, repr=False)

    def start(self) -> None:
        """Start tailing the file from its first line."""
        self._process = subprocess.Popen(
            ["tail", "-n", "+1", "-f", self.filename],
            stdout=self.stdout,
            stderr=self.stderr,
        )

    def stop(self) -> int | None:
        """Kill the tail process and wait for it; return its exit status."""
        process = self._process
        if process is None:
            return None
        process.kill()
        return process.wait()