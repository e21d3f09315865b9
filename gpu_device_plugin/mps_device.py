"""MPS-specific view of a device and its client limits."""

from __future__ import annotations

import re
from dataclasses import dataclass

_SEMVER = re.compile(
    r"v(0|[1-9]\d*)"
    r"(?:\.(0|[1-9]\d*)"
    r"(?:\.(0|[1-9]\d*)"
    r"(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?"
    r")?)?"
)

VOLTA_COMPUTE_CAPABILITY = "v7.5"
MAX_CLIENTS_VOLTA = 48
MAX_CLIENTS_PRE_VOLTA = 16


class InvalidDeviceError(ValueError):
    """Raised when a device is configured in a way MPS cannot support."""


def _version_key(version: str) -> tuple | None:
    """Return a sortable key for a 'v'-prefixed semantic version, or None if invalid."""
    match = _SEMVER.fullmatch(version)
    if match is None:
        return None
    major, minor, patch, prerelease = match.groups()
    if prerelease is None:
        pre_key: tuple = (1,)
    else:
        identifiers = tuple(
            (0, int(part), "") if part.isdigit() else (1, 0, part)
            for part in prerelease.split(".")
        )
        pre_key = (0, identifiers)
    return (int(major), int(minor or 0), int(patch or 0), pre_key)


def _compare_versions(left: str, right: str) -> int:
    """Compare versions; an invalid version sorts before every valid one."""
    left_key, right_key = _version_key(left), _version_key(right)
    if left_key is None or right_key is None:
        if left_key is None and right_key is None:
            return 0
        return -1 if left_key is None else 1
    return (left_key > right_key) - (left_key < right_key)


@dataclass
class MpsDevice:
    """A device offered through a resource, seen from the MPS daemon."""

    compute_capability: str = ""
    replicas: int = 0
    index: str = ""
    uuid: str = ""
    total_memory: int = 0
    id: str = ""

    def assert_replicas(self) -> None:
        """Raise InvalidDeviceError if more replicas are requested than MPS allows."""
        max_clients = self.max_clients()
        if self.replicas > max_clients:
            raise InvalidDeviceError(
                f"invalid device maximum allowed replicas exceeded: "
                f"{self.replicas} > {max_clients}"
            )

    def max_clients(self) -> int:
        """The maximum number of clients an MPS server supports on this device."""
        return MAX_CLIENTS_VOLTA if self.is_at_least_volta() else MAX_CLIENTS_PRE_VOLTA

    def is_at_least_volta(self) -> bool:
        """Whether the device is a Volta device or newer."""
        capability = self.compute_capability
        if capability.startswith("v"):
            capability = capability[1:]
        return _compare_versions("v" + capability, VOLTA_COMPUTE_CAPABILITY) >= 0