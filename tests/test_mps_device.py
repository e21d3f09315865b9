import pytest

from gpu_device_plugin.mps_device import InvalidDeviceError, MpsDevice

CASES = [
    ("leading v ignored", "v7.5", 0, True, 48, False),
    ("no-leading v supported", "7.5", 0, True, 48, False),
    ("pre-volta clients", "7.0", 0, False, 16, False),
    ("post-volta clients", "9.0", 0, True, 48, False),
    ("pre-volta clients exceeded", "7.0", 29, False, 16, True),
    ("post-volta clients exceeded", "9.0", 49, True, 48, True),
    ("pre-volta clients max", "7.0", 16, False, 16, False),
    ("post-volta clients max", "9.0", 48, True, 48, False),
]


@pytest.mark.parametrize(
    "capability, replicas, at_least_volta, max_clients, raises",
    [case[1:] for case in CASES],
    ids=[case[0] for case in CASES],
)
def test_device(capability, replicas, at_least_volta, max_clients, raises):
    device = MpsDevice(compute_capability=capability, replicas=replicas)
    assert device.is_at_least_volta() is at_least_volta
    assert device.max_clients() == max_clients
    if raises:
        with pytest.raises(InvalidDeviceError):
            device.assert_replicas()
    else:
        assert device.assert_replicas() is None


@pytest.mark.parametrize("capability", ["", "vv7.5", "seven", "07.5"])
def test_invalid_compute_capability_is_pre_volta(capability):
    device = MpsDevice(compute_capability=capability)
    assert device.is_at_least_volta() is False
    assert device.max_clients() == 16


def test_patch_versions_compare():
    assert MpsDevice(compute_capability="7.5.1").is_at_least_volta() is True
    assert MpsDevice(compute_capability="7.4.9").is_at_least_volta() is False
    assert MpsDevice(compute_capability="8").is_at_least_volta() is True


def test_error_message_names_limits():
    with pytest.raises(InvalidDeviceError, match="29 > 16"):
        MpsDevice(compute_capability="7.0", replicas=29).assert_replicas()