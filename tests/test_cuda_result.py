import pytest

from gpu_device_plugin.cuda_result import Result, describe_result


def test_success_string():
    assert describe_result(0) == "CUDA_SUCCESS"
    assert str(Result(0)) == "CUDA_SUCCESS"


def test_known_code_described():
    assert describe_result(700) == "CUDA_ERROR_ILLEGAL_ADDRESS"


def test_unknown_code_described():
    assert describe_result(12345) == "Unknown return value: 12345"


def test_unknown_result_code_is_99():
    assert describe_result(99) == "CUDA_ERROR_UNKNOWN"


@pytest.mark.parametrize("member", list(Result))
def test_every_member_round_trips(member):
    text = describe_result(int(member))
    assert text == str(member)
    assert text == "CUDA_" + member.name


def test_format_uses_symbolic_name():
    assert f"{Result(100)}" == "CUDA_ERROR_NO_DEVICE"
    assert describe_result(Result.ERROR_NO_DEVICE) == "CUDA_ERROR_NO_DEVICE"


def test_result_from_int_matches_member():
    assert Result(801) is Result.ERROR_NOT_SUPPORTED