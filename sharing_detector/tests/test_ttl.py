# tests/test_ttl.py

import pytest
from sharing_detector.analyzer.ttl import TTLStatus, classify, display_values


@pytest.mark.parametrize("samples, expected", [
    ([], TTLStatus.NO_DATA),
    ([128], TTLStatus.DIRECT_WINDOWS),
    ([127], TTLStatus.ROUTER_WINDOWS),
    ([64], TTLStatus.DIRECT_UNIX),
    ([63], TTLStatus.ROUTER_UNIX),
    ([128, 127], TTLStatus.ROUTER_DETECTED),
    ([64, 63], TTLStatus.ROUTER_DETECTED),
    ([128, 64], TTLStatus.MULTIPLE_OS),
    ([127, 63], TTLStatus.MULTIPLE_OS),
    ([128, 127, 64], TTLStatus.MULTIPLE_OS),
    ([128, 127, 64, 63], TTLStatus.DOUBLE_ROUTER),
])
def test_classification_table(samples, expected):
    assert classify(samples) == expected


def test_only_distinct_values_matter():
    assert classify([64] * 1000) == TTLStatus.DIRECT_UNIX
    assert classify([64] * 1000 + [63]) == TTLStatus.ROUTER_DETECTED
    assert classify([63, 64, 128, 127]) == classify([127, 128, 64, 63, 63])


def test_unrecognized_values_are_ignored():
    assert classify([255, 32]) == TTLStatus.NO_DATA
    assert classify([255, 128]) == TTLStatus.DIRECT_WINDOWS
    assert classify([62, 64]) == TTLStatus.DIRECT_UNIX


def test_classify_is_pure():
    samples = [128, 64, 63]
    assert classify(samples) == classify(list(samples))
    assert samples == [128, 64, 63]


def test_router_and_multiple_device_flags():
    assert TTLStatus.ROUTER_WINDOWS.indicates_router
    assert TTLStatus.DOUBLE_ROUTER.indicates_router
    assert not TTLStatus.DIRECT_UNIX.indicates_router
    assert not TTLStatus.NO_DATA.indicates_router
    assert TTLStatus.MULTIPLE_OS.indicates_multiple_devices
    assert not TTLStatus.ROUTER_DETECTED.indicates_multiple_devices


def test_display_values_sorted_distinct():
    assert display_values([128, 64, 128, 200]) == [64, 128, 200]
    assert display_values([]) == []
