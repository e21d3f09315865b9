import signal
import time

from gpu_device_plugin.tailer import Tailer


def _wait_for(path, text, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        content = path.read_text()
        if text in content:
            return content
        time.sleep(0.05)
    return path.read_text()


def test_stop_before_start_returns_none(tmp_path):
    assert Tailer(str(tmp_path / "missing.log")).stop() is None


def test_tailer_streams_file(tmp_path):
    source = tmp_path / "control.log"
    source.write_text("first line\nsecond line\n")
    out_path = tmp_path / "out.txt"
    with open(out_path, "w") as out:
        tailer = Tailer(str(source), stdout=out)
        tailer.start()
        try:
            content = _wait_for(out_path, "second line")
        finally:
            status = tailer.stop()
    assert "first line\nsecond line\n" in content
    assert status == -signal.SIGKILL


def test_tailer_follows_appended_lines(tmp_path):
    source = tmp_path / "control.log"
    source.write_text("")
    out_path = tmp_path / "out.txt"
    with open(out_path, "w") as out:
        tailer = Tailer(str(source), stdout=out)
        tailer.start()
        try:
            with open(source, "a") as handle:
                handle.write("appended\n")
            content = _wait_for(out_path, "appended")
        finally:
            tailer.stop()
    assert "appended" in content