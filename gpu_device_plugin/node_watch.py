"""Watch a Kubernetes node and report changes to one of its labels."""

from __future__ import annotations

import base64
import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field
from typing import Any, Iterator, Protocol

import requests
import yaml

logger = logging.getLogger(__name__)

RESOURCE_NODES = "nodes"
SERVICE_ACCOUNT_DIR = "/var/run/secrets/kubernetes.io/serviceaccount"


class _LabelSink(Protocol):
    def set(self, value: str) -> None: ...


def _resolve(base: str, path: str) -> str:
    return path if os.path.isabs(path) else os.path.join(base, path)


def _named(entries: Any, key: str) -> dict[str, dict]:
    return {
        entry["name"]: entry.get(key) or {}
        for entry in entries or []
        if isinstance(entry, dict) and "name" in entry
    }


def _node_label(node: dict, label: str) -> str:
    labels = (node.get("metadata") or {}).get("labels") or {}
    return labels.get(label, "")


@dataclass
class KubeClient:
    """A minimal client for the Kubernetes node API."""

    server: str
    session: Any = field(default_factory=requests.Session)
    timeout: float = 30.0
    watch_timeout: int = 300
    _tmpdir: Any = field(default=None, repr=False)

    @staticmethod
    def from_kubeconfig(path: str = "") -> "KubeClient":
        """Build a client from a kubeconfig file, or from the in-cluster environment."""
        if path:
            return KubeClient._from_file(path)
        if os.environ.get("KUBERNETES_SERVICE_HOST"):
            return KubeClient._in_cluster()
        logger.warning("Neither a kubeconfig nor an in-cluster environment was found")
        default = os.path.expanduser(os.path.join("~", ".kube", "config"))
        return KubeClient._from_file(default)

    @staticmethod
    def _in_cluster() -> "KubeClient":
        host = os.environ.get("KUBERNETES_SERVICE_HOST", "")
        port = os.environ.get("KUBERNETES_SERVICE_PORT", "")
        if not host or not port:
            raise RuntimeError("unable to load in-cluster configuration")
        if ":" in host and not host.startswith("["):
            host = f"[{host}]"
        token_path = os.path.join(SERVICE_ACCOUNT_DIR, "token")
        try:
            with open(token_path, encoding="utf-8") as handle:
                bearer = handle.read().strip()
        except OSError as exc:
            raise RuntimeError(f"unable to read service account token: {exc}") from exc
        session = requests.Session()
        session.headers["Authorization"] = f"Bearer {bearer}"
        ca_path = os.path.join(SERVICE_ACCOUNT_DIR, "ca.crt")
        if os.path.exists(ca_path):
            session.verify = ca_path
        return KubeClient(server=f"https://{host}:{port}", session=session)

    @staticmethod
    def _from_file(path: str) -> "KubeClient":
        try:
            with open(path, encoding="utf-8") as handle:
                doc = yaml.safe_load(handle) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise RuntimeError(f"unable to read kubeconfig {path}: {exc}") from exc

        base = os.path.dirname(os.path.abspath(path))
        contexts = _named(doc.get("contexts"), "context")
        clusters = _named(doc.get("clusters"), "cluster")
        users = _named(doc.get("users"), "user")

        context_name = doc.get("current-context") or ""
        if context_name not in contexts:
            raise RuntimeError(f"context {context_name!r} not found in kubeconfig {path}")
        context = contexts[context_name]
        cluster_name = context.get("cluster", "")
        if cluster_name not in clusters:
            raise RuntimeError(f"cluster {cluster_name!r} not found in kubeconfig {path}")
        cluster = clusters[cluster_name]
        user = users.get(context.get("user", ""), {})

        server = (cluster.get("server") or "").rstrip("/")
        if not server:
            raise RuntimeError(f"no server configured for cluster {cluster_name!r}")

        tmpdir = tempfile.TemporaryDirectory(prefix="kubeconfig-")

        def materialise(name: str, data: str) -> str:
            target = os.path.join(tmpdir.name, name)
            with open(target, "wb") as handle:
                handle.write(base64.b64decode(data))
            return target

        session = requests.Session()
        if cluster.get("insecure-skip-tls-verify"):
            session.verify = False
        elif ca_data := cluster.get("certificate-authority-data"):
            session.verify = materialise("ca.crt", ca_data)
        elif ca_file := cluster.get("certificate-authority"):
            session.verify = _resolve(base, ca_file)

        bearer = user.get("token")
        if not bearer and user.get("tokenFile"):
            with open(_resolve(base, user["tokenFile"]), encoding="utf-8") as handle:
                bearer = handle.read().strip()
        if bearer:
            session.headers["Authorization"] = f"Bearer {bearer}"
        elif user.get("username"):
            session.auth = (user["username"], user.get("password", ""))

        cert = None
        if cert_data := user.get("client-certificate-data"):
            cert = materialise("client.crt", cert_data)
        elif cert_file := user.get("client-certificate"):
            cert = _resolve(base, cert_file)
        key = None
        if key_data := user.get("client-key-data"):
            key = materialise("client.key", key_data)
        elif key_file := user.get("client-key"):
            key = _resolve(base, key_file)
        if cert and key:
            session.cert = (cert, key)
        elif cert:
            session.cert = cert

        return KubeClient(server=server, session=session, _tmpdir=tmpdir)

    def watch_node(self, node_name: str) -> Iterator[tuple[str, Any]]:
        """List the named node, then stream changes to it.

        Yields ``("SYNC", node)`` for each listed node, then ``("SYNCED", None)``,
        then ``("ADDED" | "MODIFIED" | "DELETED", node)`` for watch events.
        The generator ends when the server closes the watch.
        """
        url = f"{self.server}/api/v1/{RESOURCE_NODES}"
        selector = f"metadata.name={node_name}"

        response = self.session.get(
            url, params={"fieldSelector": selector}, timeout=self.timeout
        )
        response.raise_for_status()
        body = response.json()
        for item in body.get("items") or []:
            yield "SYNC", item
        yield "SYNCED", None

        resource_version = (body.get("metadata") or {}).get("resourceVersion", "")
        params = {
            "fieldSelector": selector,
            "watch": "true",
            "resourceVersion": resource_version,
            "timeoutSeconds": str(self.watch_timeout),
        }
        with self.session.get(
            url, params=params, stream=True, timeout=(self.timeout, None)
        ) as stream:
            stream.raise_for_status()
            for line in stream.iter_lines():
                if not line:
                    continue
                event = json.loads(line)
                event_type = event.get("type")
                obj = event.get("object") or {}
                if event_type == "ERROR":
                    raise RuntimeError(f"watch error: {obj.get('message', obj)}")
                if event_type in ("ADDED", "MODIFIED", "DELETED"):
                    yield event_type, obj


@dataclass
class NodeLabelSync:
    """Forwards the value of a node label to a config sink whenever it changes."""

    client: Any
    node_name: str
    label: str
    config: _LabelSink
    retry_interval: float = 1.0

    def on_add(self, node: dict) -> None:
        self.config.set(_node_label(node, self.label))

    def on_update(self, old: dict, new: dict) -> None:
        old_label = _node_label(old, self.label)
        new_label = _node_label(new, self.label)
        if old_label != new_label:
            self.config.set(new_label)

    def on_delete(self, node: dict) -> None:
        if _node_label(node, self.label) != "":
            self.config.set("")

    def run(self, stop_event: threading.Event) -> None:
        """Watch the node until ``stop_event`` is set, re-listing after failures."""
        known: dict | None = None
        while not stop_event.is_set():
            try:
                listed = False
                for event_type, node in self.client.watch_node(self.node_name):
                    if stop_event.is_set():
                        return
                    if event_type in ("SYNC", "ADDED", "MODIFIED"):
                        listed = listed or event_type == "SYNC"
                        if known is None:
                            self.on_add(node)
                        else:
                            self.on_update(known, node)
                        known = node
                    elif event_type == "SYNCED":
                        if not listed and known is not None:
                            self.on_delete(known)
                            known = None
                    elif event_type == "DELETED":
                        self.on_delete(node)
                        known = None
            except (requests.RequestException, RuntimeError, ValueError) as exc:
                logger.error("error watching node %s: %s", self.node_name, exc)
                stop_event.wait(self.retry_interval)

    def start(self) -> threading.Event:
        """Run the watch in a background thread; set the returned event to stop it."""
        stop_event = threading.Event()
        thread = threading.Thread(
            target=self.run, args=(stop_event,), name="node-label-sync", daemon=True
        )
        thread.start()
        return stop_event