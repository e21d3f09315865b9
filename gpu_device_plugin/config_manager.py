"""Keep a device-plugin config symlink in step with a node label."""

from __future__ import annotations

import argparse
import logging
import os
import signal as signal_module
import threading
from dataclasses import dataclass, field

from gpu_device_plugin.node_watch import KubeClient, NodeLabelSync

logger = logging.getLogger(__name__)

DEFAULT_ONESHOT = False
DEFAULT_SEND_SIGNAL = True
DEFAULT_SIGNAL = int(signal_module.SIGHUP)
DEFAULT_PROCESS_TO_SIGNAL = "nvidia-device-plugin"
DEFAULT_CONFIG_LABEL = "nvidia.com/device-plugin.config"

FALLBACK_STRATEGY_NAMED_CONFIG = "named"
FALLBACK_STRATEGY_SINGLE_CONFIG = "single"
FALLBACK_STRATEGY_EMPTY_CONFIG = "empty"

NAMED_CONFIG_FALLBACK = "default"

_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}


class ConfigManagerError(RuntimeError):
    """Raised when the config cannot be selected, linked or announced."""


@dataclass
class Flags:
    """Settings of the config manager."""

    oneshot: bool = DEFAULT_ONESHOT
    kubeconfig: str = ""
    node_name: str = ""
    node_label: str = DEFAULT_CONFIG_LABEL
    config_file_srcdir: str = ""
    config_file_dst: str = ""
    default_config: str = ""
    fallback_strategies: list[str] = field(default_factory=list)
    send_signal: bool = DEFAULT_SEND_SIGNAL
    signal: int = DEFAULT_SIGNAL
    process_to_signal: str = DEFAULT_PROCESS_TO_SIGNAL


class SyncableConfig:
    """A value whose readers block until it is set again.

    A call to ``get`` waits for a ``set`` made after the previous read;
    several ``set`` calls between reads do not queue.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._current = ""
        self._last_read = ""

    def set(self, value: str) -> None:
        with self._cond:
            self._current = value
            self._cond.notify_all()

    def get(self) -> str:
        with self._cond:
            if self._last_read == self._current:
                self._cond.wait()
            self._last_read = self._current
            return self._last_read


def validate_flags(flags: Flags) -> None:
    """Raise ConfigManagerError if a required setting is empty."""
    for name, value in (
        ("node-name", flags.node_name),
        ("node-label", flags.node_label),
        ("config-file-srcdir", flags.config_file_srcdir),
        ("config-file-dst", flags.config_file_dst),
    ):
        if value == "":
            raise ConfigManagerError(f"invalid <{name}>: must not be empty string")


def config_file_names(srcdir: str) -> set[str]:
    """Names of the config files in a directory, leaving out directories and '..' entries."""
    try:
        entries = list(os.scandir(srcdir))
    except OSError as exc:
        raise ConfigManagerError(f"error reading directory: {exc}") from exc
    return {
        entry.name
        for entry in entries
        if not entry.is_dir(follow_symlinks=False) and not entry.name.startswith("..")
    }


def file_exists(path: str) -> bool:
    """Whether a path exists and is not a directory."""
    try:
        info = os.stat(path)
    except FileNotFoundError:
        return False
    import stat

    return not stat.S_ISDIR(info.st_mode)


def update_config_name(config: str, flags: Flags) -> str:
    """Choose the config name to use, applying the default and the fallbacks."""
    try:
        files = config_file_names(flags.config_file_srcdir)
    except ConfigManagerError as exc:
        raise ConfigManagerError(f"error getting list of configuration files: {exc}") from exc

    if not files:
        raise ConfigManagerError("no configuration files available")

    filenames = sorted(files)

    if config != "":
        if config not in files:
            raise ConfigManagerError(f"specified config {config} does not exist")
        return config

    if flags.default_config != "":
        logger.info("No value set. Selecting default name: %s", flags.default_config)
        if flags.default_config not in files:
            raise ConfigManagerError(f"specified config {flags.default_config} does not exist")
        return flags.default_config

    logger.info(
        "No value set and no default set. Attempting fallback strategies: %s",
        flags.fallback_strategies,
    )
    for fallback in flags.fallback_strategies:
        if fallback == FALLBACK_STRATEGY_NAMED_CONFIG:
            logger.info("Attempting to find config named: %s", NAMED_CONFIG_FALLBACK)
            if NAMED_CONFIG_FALLBACK in files:
                return NAMED_CONFIG_FALLBACK
            logger.info("No configuration named '%s' was found", NAMED_CONFIG_FALLBACK)
        elif fallback == FALLBACK_STRATEGY_SINGLE_CONFIG:
            logger.info("Attempting to see if only a single config is available...")
            if len(filenames) == 1:
                return filenames[0]
            logger.info("More than one configuration was found: %s", filenames)
        elif fallback == FALLBACK_STRATEGY_EMPTY_CONFIG:
            logger.info("Falling back to an empty configuration")
            return ""
        else:
            raise ConfigManagerError(f"unknown fallback strategy: {fallback}")

    raise ConfigManagerError(
        "no config was set, no default was provided, and all fallbacks failed"
    )


def update_symlink(config: str, flags: Flags) -> bool:
    """Point the destination at the chosen config; return whether it changed."""
    src = "/dev/null"
    if config != "":
        src = os.path.normpath(os.path.join(flags.config_file_srcdir, config))
    dst = flags.config_file_dst

    try:
        exists = file_exists(dst)
    except OSError as exc:
        raise ConfigManagerError(f"error checking if file '{dst}' exists: {exc}") from exc

    if exists:
        try:
            src_real = os.path.realpath(src, strict=True)
        except OSError as exc:
            raise ConfigManagerError(f"error evaluating realpath of '{src}': {exc}") from exc
        try:
            dst_real = os.path.realpath(dst, strict=True)
        except OSError as exc:
            raise ConfigManagerError(f"error evaluating realpath of '{dst}': {exc}") from exc
        if src_real == dst_real:
            return False
        try:
            os.remove(dst)
        except OSError as exc:
            raise ConfigManagerError(f"error removing existing config: {exc}") from exc

    try:
        os.symlink(src, dst)
    except OSError as exc:
        raise ConfigManagerError(f"error creating symlink: {exc}") from exc
    return True


def _signal_name(number: int) -> str:
    try:
        return signal_module.Signals(number).name
    except ValueError:
        return f"signal {number}"


def update_config(config: str, flags: Flags) -> None:
    """Switch to the chosen config and signal the plugin if it changed."""
    config = update_config_name(config, flags)

    if config == "":
        logger.info("Updating to empty config")
    else:
        logger.info("Updating to config: %s", config)

    if not update_symlink(config, flags):
        logger.info("Already configured. Skipping update...")
        return

    if config == "":
        logger.info("Successfully updated to empty config")
    else:
        logger.info("Successfully updated to config: %s", config)

    if flags.send_signal:
        logger.info(
            "Sending signal '%s' to '%s'", _signal_name(flags.signal), flags.process_to_signal
        )
        signal_process(flags)
        logger.info("Successfully sent signal")


def find_pid_to_signal(process_name: str) -> int:
    """Return the pid of the first process whose argv[0] equals ``process_name``."""
    try:
        pids = sorted(int(name) for name in os.listdir("/proc") if name.isdigit())
    except OSError as exc:
        raise ConfigManagerError(f"error getting list of all procs: {exc}") from exc

    for pid in pids:
        try:
            with open(f"/proc/{pid}/cmdline", "rb") as handle:
                raw = handle.read()
        except (FileNotFoundError, ProcessLookupError):
            continue
        except OSError as exc:
            raise ConfigManagerError(f"error getting cmdline: {exc}") from exc
        args = [part.decode(errors="replace") for part in raw.split(b"\0") if part]
        if args and args[0] == process_name:
            return pid
    raise ConfigManagerError("no process found")


def signal_process(flags: Flags) -> None:
    """Send the configured signal to the configured process."""
    try:
        pid = find_pid_to_signal(flags.process_to_signal)
    except ConfigManagerError as exc:
        raise ConfigManagerError(f"error finding pid: {exc}") from exc
    try:
        os.kill(pid, flags.signal)
    except OSError as exc:
        raise ConfigManagerError(f"error sending signal: {exc}") from exc


def _parse_bool(value: str) -> bool:
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean value {value!r}")


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    return default if value is None else _parse_bool(value)


def _split_list(values: list[str] | None) -> list[str]:
    return [item for value in values or [] for item in value.split(",") if item]


def _parse_args(argv: list[str] | None) -> Flags:
    env = os.environ
    parser = argparse.ArgumentParser(prog="config-manager")
    parser.add_argument("--oneshot", nargs="?", const=True, type=_parse_bool,
                        default=_env_bool("ONESHOT", DEFAULT_ONESHOT),
                        help="check and update the config only once and then exit")
    parser.add_argument("--kubeconfig", default=env.get("KUBECONFIG", ""),
                        help="absolute path to the kubeconfig file")
    parser.add_argument("--node-name", default=env.get("NODE_NAME", ""),
                        help="the name of the node to watch for label changes on")
    parser.add_argument("--node-label", default=env.get("NODE_LABEL", DEFAULT_CONFIG_LABEL),
                        help="the name of the node label to use for selecting a config")
    parser.add_argument("--config-file-srcdir", default=env.get("CONFIG_FILE_SRCDIR", ""),
                        help="the path to the directory containing available device configuration files")
    parser.add_argument("--config-file-dst", default=env.get("CONFIG_FILE_DST", ""),
                        help="the path to destination device configuration file")
    parser.add_argument("--default-config", default=env.get("DEFAULT_CONFIG", ""),
                        help="the default config to use if no label is set")
    parser.add_argument("--fallback-strategies", action="append", default=None,
                        help="ordered list of fallback strategies to use to set a default config when none is provided")
    parser.add_argument("--send-signal", nargs="?", const=True, type=_parse_bool,
                        default=_env_bool("SEND_SIGNAL", DEFAULT_SEND_SIGNAL),
                        help="send a signal to <process-to-signal> once a config change is made")
    parser.add_argument("--signal", type=int, default=int(env.get("SIGNAL", DEFAULT_SIGNAL)),
                        help="the signal to sent to <process-to-signal> if <send-signal> is set")
    parser.add_argument("--process-to-signal",
                        default=env.get("PROCESS_TO_SIGNAL", DEFAULT_PROCESS_TO_SIGNAL),
                        help="the name of the process to signal if <send-signal> is set")
    args = parser.parse_args(argv)

    strategies = args.fallback_strategies
    if strategies is None and env.get("FALLBACK_STRATEGIES"):
        strategies = [env["FALLBACK_STRATEGIES"]]

    return Flags(
        oneshot=args.oneshot,
        kubeconfig=args.kubeconfig,
        node_name=args.node_name,
        node_label=args.node_label,
        config_file_srcdir=args.config_file_srcdir,
        config_file_dst=args.config_file_dst,
        default_config=args.default_config,
        fallback_strategies=_split_list(strategies),
        send_signal=args.send_signal,
        signal=args.signal,
        process_to_signal=args.process_to_signal,
    )


def main(argv: list[str] | None = None) -> int:
    """Run the config manager; return the process exit code."""
    logging.basicConfig(level=logging.INFO)
    try:
        flags = _parse_args(argv)
        validate_flags(flags)
        try:
            client = KubeClient.from_kubeconfig(flags.kubeconfig)
        except (OSError, RuntimeError, ValueError) as exc:
            raise ConfigManagerError(f"error building kubernetes client: {exc}") from exc

        config = SyncableConfig()
        stop = NodeLabelSync(
            client=client, node_name=flags.node_name, label=flags.node_label, config=config
        ).start()
        try:
            while True:
                logger.info("Waiting for change to '%s' label", flags.node_label)
                value = config.get()
                logger.info("Label change detected: %s=%s", flags.node_label, value)
                update_config(value, flags)
                if flags.oneshot:
                    return 0
        finally:
            stop.set()
    except ConfigManagerError as exc:
        logger.error("%s", exc)
        return 1