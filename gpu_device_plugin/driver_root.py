"""Helpers for locating files below an NVIDIA driver root."""

from __future__ import annotations

import os
import posixpath
from dataclasses import dataclass

LIBRARY_SEARCH_PATHS = (
    "/usr/lib64",
    "/usr/lib/x86_64-linux-gnu",
    "/usr/lib/aarch64-linux-gnu",
    "/lib64",
    "/lib/x86_64-linux-gnu",
    "/lib/aarch64-linux-gnu",
)


def _join(*parts: str) -> str:
    """Join non-empty path elements with '/' and clean the result."""
    joined = "/".join(part for part in parts if part)
    if not joined:
        return ""
    cleaned = posixpath.normpath(joined)
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def resolve_link(path: str) -> str:
    """Return the fully resolved target of a path, like ``readlink -f``."""
    try:
        return os.path.realpath(path, strict=True)
    except OSError as exc:
        raise OSError(exc.errno, f"error resolving link '{path}': {exc}") from exc


@dataclass(frozen=True)
class DriverRoot:
    """The root path at which an NVIDIA driver installation is found."""

    path: str

    def __str__(self) -> str:
        return self.path

    def join(self, *args: str) -> str:
        """Join path elements below this root."""
        return _join(self.path, *args)

    def get_dev_root(self) -> str:
        """Return this root if it holds a /dev directory, otherwise '/'."""
        return self.path if self.is_dev_root() else "/"

    def is_dev_root(self) -> bool:
        """Whether this root contains a dev directory."""
        return os.path.isdir(_join(self.path, "dev"))

    def try_resolve_library(self, library_name: str) -> str:
        """Resolve a library below the root, or return the bare name."""
        if self.path in ("", "/"):
            return library_name
        for directory in LIBRARY_SEARCH_PATHS:
            try:
                return resolve_link(self.join(directory, library_name))
            except OSError:
                continue
        return library_name