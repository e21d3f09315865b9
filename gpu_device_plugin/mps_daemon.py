"""Control of an MPS daemon serving the devices of one resource."""

from __future__ import annotations

import enum
import logging
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

from gpu_device_plugin.mps_device import MpsDevice
from gpu_device_plugin.mps_root import Root
from gpu_device_plugin.tailer import Tailer

logger = logging.getLogger(__name__)

MPS_CONTROL_BIN = "nvidia-cuda-mps-control"
NVIDIA_SMI_BIN = "nvidia-smi"
UNPRIVILEGED_CONTAINER_SELINUX_LABEL = "system_u:object_r:container_file_t:s0"
SELINUX_FS = "/sys/fs/selinux"


class ComputeMode(str, enum.Enum):
    """GPU compute modes set through nvidia-smi."""

    EXCLUSIVE_PROCESS = "EXCLUSIVE_PROCESS"
    DEFAULT = "DEFAULT"

    def __str__(self) -> str:
        return self.value


class _ResourceManager(Protocol):
    resource: str
    devices: Sequence[MpsDevice]


def set_selinux_context(path: str, context: str) -> None:
    """Label a path recursively with an SELinux context, if SELinux is enabled."""
    if not os.path.exists(SELINUX_FS):
        logger.info("SELinux disabled, not updating context for %s", path)
        return
    logger.info("SELinux enabled, setting context %s on %s", context, path)
    value = context.encode()
    os.setxattr(path, "security.selinux", value, follow_symlinks=False)
    if os.path.isdir(path) and not os.path.islink(path):
        for dirpath, dirnames, filenames in os.walk(path):
            for name in (*dirnames, *filenames):
                os.setxattr(
                    os.path.join(dirpath, name),
                    "security.selinux",
                    value,
                    follow_symlinks=False,
                )


def _unique_uuids(devices: Sequence[MpsDevice]) -> list[str]:
    return list(dict.fromkeys(device.uuid for device in devices))


@dataclass
class Daemon:
    """An MPS control daemon for one resource and the devices it exposes."""

    resource_manager: Any
    root: Root
    control_binary: str = MPS_CONTROL_BIN
    smi_binary: str = NVIDIA_SMI_BIN
    _log_tailer: Tailer | None = field(default=None, init=False, repr=False)

    @property
    def _resource(self) -> str:
        return str(self.resource_manager.resource)

    @property
    def _devices(self) -> Sequence[MpsDevice]:
        return self.resource_manager.devices

    def env_vars(self) -> dict[str, str]:
        """Environment that clients of the shared devices need."""
        return {
            "CUDA_MPS_PIPE_DIRECTORY": self.pipe_dir(),
            "CUDA_MPS_LOG_DIRECTORY": self.log_dir(),
        }

    def log_dir(self) -> str:
        return self.root.log_dir(self._resource)

    def pipe_dir(self) -> str:
        return self.root.pipe_dir(self._resource)

    def shm_dir(self) -> str:
        return "/dev/shm"

    def _started_file(self) -> str:
        return self.root.started_file(self._resource)

    def _control_command(self) -> str:
        return shutil.which(self.control_binary) or self.control_binary

    def start(self) -> None:
        """Start the daemon in the background and apply memory and thread limits."""
        mode = ComputeMode.EXCLUSIVE_PROCESS
        try:
            self._set_compute_mode(mode)
        except RuntimeError as exc:
            raise RuntimeError(f"error setting compute mode {mode}: {exc}") from exc

        logger.info("Starting MPS daemon for resource %s", self._resource)

        pipe_dir = self.pipe_dir()
        try:
            os.makedirs(pipe_dir, mode=0o755, exist_ok=True)
        except OSError as exc:
            raise RuntimeError(f"error creating directory {pipe_dir}: {exc}") from exc

        try:
            set_selinux_context(pipe_dir, UNPRIVILEGED_CONTAINER_SELINUX_LABEL)
        except OSError as exc:
            raise RuntimeError(f"error setting SELinux context: {exc}") from exc

        log_dir = self.log_dir()
        try:
            os.makedirs(log_dir, mode=0o755, exist_ok=True)
        except OSError as exc:
            raise RuntimeError(f"error creating directory {log_dir}: {exc}") from exc

        subprocess.run([self._control_command(), "-d"], env=self.env_vars(), check=True)

        for index, limit in self.pinned_device_memory_limits().items():
            try:
                self.echo_pipe_to_control(
                    f"set_default_device_pinned_mem_limit {index} {limit}"
                )
            except RuntimeError as exc:
                raise RuntimeError(
                    f"error setting pinned memory limit for device {index}: {exc}"
                ) from exc

        thread_percentage = self.active_thread_percentage()
        if thread_percentage:
            try:
                self.echo_pipe_to_control(
                    f"set_default_active_thread_percentage {thread_percentage}"
                )
            except RuntimeError as exc:
                raise RuntimeError(f"error setting active thread percentage: {exc}") from exc

        with open(self._started_file(), "w"):
            pass

        self._log_tailer = Tailer(os.path.join(log_dir, "control.log"))
        logger.info("Starting log tailer for resource %s", self._resource)
        try:
            self._log_tailer.start()
        except OSError as exc:
            logger.error("Could not start tail command on control.log; ignoring logs: %s", exc)

    def stop(self) -> None:
        """Quit the daemon, restore the compute mode and clean up its files."""
        try:
            self.echo_pipe_to_control("quit")
        except RuntimeError as exc:
            raise RuntimeError(f"error sending quit message: {exc}") from exc
        logger.info("Stopped MPS control daemon for resource %s", self._resource)

        if self._log_tailer is not None:
            status = self._log_tailer.stop()
            logger.info("Stopped log tailer for resource %s (status %s)", self._resource, status)

        mode = ComputeMode.DEFAULT
        try:
            self._set_compute_mode(mode)
        except RuntimeError as exc:
            raise RuntimeError(f"error setting compute mode {mode}: {exc}") from exc

        try:
            os.remove(self._started_file())
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise RuntimeError(f"failed to remove started file: {exc}") from exc

        log_dir = self.log_dir()
        try:
            shutil.rmtree(log_dir)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.error("Failed to remove log directory %s: %s", log_dir, exc)

    def assert_healthy(self) -> None:
        """Raise RuntimeError if the control daemon does not answer."""
        self.echo_pipe_to_control("get_default_active_thread_percentage")

    def echo_pipe_to_control(self, command: str) -> str:
        """Send a command to the control daemon and return its output."""
        try:
            result = subprocess.run(
                [self._control_command()],
                input=command,
                stdout=subprocess.PIPE,
                text=True,
                env=self.env_vars(),
                check=False,
            )
        except OSError as exc:
            raise RuntimeError(f"failed to start NVIDIA MPS command: {exc}") from exc
        if result.returncode != 0:
            raise RuntimeError(
                f"failed to send command to MPS daemon: exit status {result.returncode}"
            )
        return result.stdout

    def _set_compute_mode(self, mode: ComputeMode) -> None:
        for uuid in _unique_uuids(self._devices):
            try:
                result = subprocess.run(
                    [self.smi_binary, "-i", uuid, "-c", mode.value],
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    text=True,
                    check=False,
                )
            except OSError as exc:
                raise RuntimeError(f"error running nvidia-smi: {exc}") from exc
            if result.returncode != 0:
                logger.error("\n%s", result.stdout)
                raise RuntimeError(
                    f"error running nvidia-smi: exit status {result.returncode}"
                )

    def pinned_device_memory_limits(self) -> dict[str, str]:
        """Per-device pinned memory limits, shared out between the replicas."""
        total_memory: dict[str, int] = {}
        replicas: dict[str, int] = {}
        for device in self._devices:
            total_memory[device.index] = device.total_memory
            replicas[device.index] = replicas.get(device.index, 0) + 1

        return {
            index: f"{memory // replicas[index] // 1024 // 1024}M"
            for index, memory in total_memory.items()
            if memory != 0
        }

    def active_thread_percentage(self) -> str:
        """The share of threads each client gets, or '' when there are no devices."""
        devices = self._devices
        if not devices:
            return ""
        replicas_per_device = len(devices) // len(_unique_uuids(devices))
        return str(100 // replicas_per_device)