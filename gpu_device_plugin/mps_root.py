"""Paths below an MPS root where per-resource pipe and log directories live."""

from __future__ import annotations

import posixpath
from dataclasses import dataclass


def _join(*parts: str) -> str:
    joined = "/".join(part for part in parts if part)
    if not joined:
        return ""
    cleaned = posixpath.normpath(joined)
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


@dataclass(frozen=True)
class Root:
    """An MPS root; in containers the host root is usually mounted at /mps."""

    root: str

    def __str__(self) -> str:
        return self.root

    def log_dir(self, resource_name: str) -> str:
        """The per-resource log directory."""
        return self.path(str(resource_name), "log")

    def pipe_dir(self, resource_name: str) -> str:
        """The per-resource pipe directory."""
        return self.path(str(resource_name), "pipe")

    def shm_dir(self, resource_name: str) -> str:
        """The shm directory, shared by all resources."""
        return self.path("shm")

    def started_file(self, resource_name: str) -> str:
        """The per-resource .started marker file."""
        return self.path(str(resource_name), ".started")

    def path(self, *args: str) -> str:
        """A path relative to the root."""
        return _join(self.root, *args)


CONTAINER_ROOT = Root("/mps")