[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "gpu-device-plugin"
version = "0.17.0"
description = "Node-side helpers for sharing GPUs in a Kubernetes cluster: label-driven config switching, MPS control daemons and shm mounts."
requires-python = ">=3.10"
keywords = ["kubernetes", "gpu", "mps", "node-labels", "config", "tmpfs"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Clustering",
    "Topic :: System :: Systems Administration",
]
dependencies = [
    "requests",
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
gpu-config-manager = "gpu_device_plugin.config_manager:main"
gpu-mps-mount-shm = "gpu_device_plugin.shm:main"

[tool.hatch.build.targets.wheel]
packages = ["gpu_device_plugin"]

[tool.pytest.ini_options]
addopts = "-ra"
