"""Node-side tooling for sharing GPUs in a Kubernetes cluster: config switching, MPS daemons and shm mounts."""

__version__ = "0.17.0"