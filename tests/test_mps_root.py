from gpu_device_plugin.mps_root import CONTAINER_ROOT, Root

RESOURCE = "nvidia.com/gpu"


def test_container_root_log_and_pipe_dirs():
    assert CONTAINER_ROOT.log_dir(RESOURCE) == "/mps/nvidia.com/gpu/log"
    assert CONTAINER_ROOT.pipe_dir(RESOURCE) == "/mps/nvidia.com/gpu/pipe"


def test_started_file_is_under_resource():
    assert CONTAINER_ROOT.started_file(RESOURCE) == "/mps/nvidia.com/gpu/.started"


def test_shm_dir_is_shared_by_all_resources():
    root = Root("/mps")
    assert root.shm_dir("a") == root.shm_dir("b") == "/mps/shm"


def test_path_cleans_result():
    root = Root("/mps/")
    assert root.path("x", "..", "y", "") == "/mps/y"
    assert root.path() == "/mps"


def test_relative_root(tmp_path):
    root = Root(str(tmp_path))
    assert root.log_dir(RESOURCE).startswith(str(tmp_path))
    assert root.log_dir(RESOURCE).endswith("/log")