import base64
import json
import threading

import pytest

from gpu_device_plugin.node_watch import KubeClient, NodeLabelSync

LABEL = "nvidia.com/device-plugin.config"


def _node(value=None, name="node-a"):
    labels = {} if value is None else {LABEL: value}
    return {"metadata": {"name": name, "labels": labels}}


class Recorder:
    def __init__(self):
        self.values = []

    def set(self, value):
        self.values.append(value)


def _kubeconfig(tmp_path, cluster, user):
    doc = {
        "current-context": "ctx",
        "contexts": [{"name": "ctx", "context": {"cluster": "c", "user": "u"}}],
        "clusters": [{"name": "c", "cluster": cluster}],
        "users": [{"name": "u", "user": user}],
    }
    path = tmp_path / "kubeconfig"
    path.write_text(json.dumps(doc))
    return str(path)


def test_from_kubeconfig_token(tmp_path):
    path = _kubeconfig(tmp_path, {"server": "https://example.com:6443/"}, {"token": "token"})
    client = KubeClient.from_kubeconfig(path)
    assert client.server == "https://example.com:6443"
    assert client.session.headers["Authorization"] == "Bearer token"


def test_from_kubeconfig_ca_data_written(tmp_path):
    ca = b"-----BEGIN CERTIFICATE-----\nplaceholder\n"
    path = _kubeconfig(
        tmp_path,
        {"server": "https://example.com", "certificate-authority-data": base64.b64encode(ca).decode()},
        {},
    )
    client = KubeClient.from_kubeconfig(path)
    with open(client.session.verify, "rb") as handle:
        assert handle.read() == ca


def test_from_kubeconfig_relative_ca(tmp_path):
    path = _kubeconfig(
        tmp_path, {"server": "https://example.com", "certificate-authority": "ca.pem"}, {}
    )
    client = KubeClient.from_kubeconfig(path)
    assert client.session.verify == str(tmp_path / "ca.pem")


def test_from_kubeconfig_missing_context(tmp_path):
    path = tmp_path / "kubeconfig"
    path.write_text(json.dumps({"current-context": "nope", "contexts": []}))
    with pytest.raises(RuntimeError, match="nope"):
        KubeClient.from_kubeconfig(str(path))


class FakeResponse:
    def __init__(self, body=None, lines=()):
        self._body = body
        self._lines = lines

    def raise_for_status(self):
        return None

    def json(self):
        return self._body

    def iter_lines(self):
        return iter(self._lines)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def get(self, url, params=None, **kwargs):
        self.calls.append((url, params))
        return self.responses.pop(0)


def test_watch_node_lists_then_streams():
    listed = _node("a")
    modified = _node("b")
    session = FakeSession(
        [
            FakeResponse({"items": [listed], "metadata": {"resourceVersion": "7"}}),
            FakeResponse(lines=[b"", json.dumps({"type": "MODIFIED", "object": modified}).encode()]),
        ]
    )
    client = KubeClient(server="https://example.com", session=session)
    events = list(client.watch_node("node-a"))
    assert events == [("SYNC", listed), ("SYNCED", None), ("MODIFIED", modified)]
    assert session.calls[0] == (
        "https://example.com/api/v1/nodes",
        {"fieldSelector": "metadata.name=node-a"},
    )
    assert session.calls[1][1]["resourceVersion"] == "7"
    assert session.calls[1][1]["watch"] == "true"


def test_watch_node_error_event_raises():
    session = FakeSession(
        [
            FakeResponse({"items": [], "metadata": {}}),
            FakeResponse(lines=[json.dumps({"type": "ERROR", "object": {"message": "gone"}}).encode()]),
        ]
    )
    client = KubeClient(server="https://example.com", session=session)
    with pytest.raises(RuntimeError, match="gone"):
        list(client.watch_node("node-a"))


def test_handlers():
    recorder = Recorder()
    sync = NodeLabelSync(client=None, node_name="node-a", label=LABEL, config=recorder)
    sync.on_add(_node("x"))
    sync.on_update(_node("x"), _node("x"))
    sync.on_update(_node("x"), _node("y"))
    sync.on_delete(_node(None))
    sync.on_delete(_node("y"))
    assert recorder.values == ["x", "y", ""]


class FakeClient:
    def __init__(self, batches, stop_event):
        self.batches = list(batches)
        self.stop_event = stop_event

    def watch_node(self, node_name):
        events = self.batches.pop(0)
        yield from events
        if not self.batches:
            self.stop_event.set()


def test_run_dispatches_events():
    stop = threading.Event()
    client = FakeClient(
        [
            [("SYNC", _node("a")), ("SYNCED", None), ("MODIFIED", _node("b"))],
            [("SYNCED", None)],
        ],
        stop,
    )
    recorder = Recorder()
    NodeLabelSync(client=client, node_name="node-a", label=LABEL, config=recorder).run(stop)
    assert recorder.values == ["a", "b", ""]


def test_run_retries_after_error():
    stop = threading.Event()

    class Flaky:
        def __init__(self):
            self.calls = 0

        def watch_node(self, node_name):
            self.calls += 1
            if self.calls == 1:
                raise RuntimeError("boom")
            yield "SYNC", _node("z")
            stop.set()

    recorder = Recorder()
    client = Flaky()
    NodeLabelSync(client=client, node_name="n", label=LABEL, config=recorder, retry_interval=0).run(stop)
    assert client.calls == 2
    assert recorder.values == ["z"]