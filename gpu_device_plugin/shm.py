"""Set up the tmpfs shared-memory mount used by the MPS control daemon."""

from __future__ import annotations

import argparse
import logging
import os
import re
import shutil
import subprocess

logger = logging.getLogger(__name__)

DEFAULT_SHM_DIR = "/mps/shm"
FALLBACK_SHM_SIZE = "65536k"
MOUNT_OPTIONS = ("rw", "nosuid", "nodev", "noexec", "relatime")

_INTEGER = re.compile(r"[+-]?\d+")


def default_shm_size(meminfo_path: str = "/proc/meminfo") -> str:
    """Return half of the total memory as a tmpfs size, or a fallback size."""
    try:
        with open(meminfo_path, encoding="utf-8") as meminfo:
            for line in meminfo:
                line = line.rstrip("\n")
                if not line.startswith("MemTotal:"):
                    continue
                parts = line[len("MemTotal:"):].strip().split(" ", 1)
                if not _INTEGER.fullmatch(parts[0]):
                    logger.error("could not convert MemTotal to an integer: %r", parts[0])
                    return FALLBACK_SHM_SIZE
                mem_total = int(parts[0])
                unit = parts[1][0] if len(parts) == 2 else ""
                half = abs(mem_total) // 2
                if mem_total < 0:
                    half = -half
                return f"{half}{unit}"
    except OSError as exc:
        logger.error("failed to open %s: %s", meminfo_path, exc)
        return FALLBACK_SHM_SIZE
    return FALLBACK_SHM_SIZE


def _run(cmd: list[str], action: str) -> None:
    result = subprocess.run(cmd, capture_output=True, text=True, check=False)
    if result.returncode != 0:
        output = (result.stdout or "") + (result.stderr or "")
        raise RuntimeError(f"{action} failed with exit code {result.returncode}: {output.strip()}")


def _cleanup_mount_point(path: str) -> None:
    """Unmount the path if it is a mount point, then remove it."""
    if not os.path.lexists(path):
        return
    if os.path.ismount(path):
        _run([shutil.which("umount") or "umount", path], f"unmounting {path}")
    if os.path.isdir(path) and not os.path.islink(path):
        os.rmdir(path)
    else:
        os.unlink(path)


def mount_shm(shm_dir: str = DEFAULT_SHM_DIR) -> None:
    """Create a fresh tmpfs mount at ``shm_dir`` sized at half the total memory."""
    mount_executable = shutil.which("mount")
    if mount_executable is None:
        raise RuntimeError("error finding 'mount' executable")

    try:
        _cleanup_mount_point(shm_dir)
    except (OSError, RuntimeError) as exc:
        raise RuntimeError(f"error unmounting {shm_dir}: {exc}") from exc

    try:
        os.makedirs(shm_dir, mode=0o755, exist_ok=True)
    except OSError as exc:
        raise RuntimeError(f"error creating directory {shm_dir}: {exc}") from exc

    options = ",".join((*MOUNT_OPTIONS, f"size={default_shm_size()}"))
    try:
        _run(
            [mount_executable, "-t", "tmpfs", "-o", options, "shm", shm_dir],
            f"mounting {shm_dir}",
        )
    except RuntimeError as exc:
        raise RuntimeError(f"error mounting {shm_dir} as tmpfs: {exc}") from exc


def main(argv: list[str] | None = None) -> int:
    """Run the mount-shm command; return the process exit code."""
    parser = argparse.ArgumentParser(
        prog="mount-shm",
        description="Set up the /dev/shm mount required by the MPS daemon",
    )
    parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    try:
        mount_shm()
    except (OSError, RuntimeError) as exc:
        logger.error("%s", exc)
        return 1
    return 0