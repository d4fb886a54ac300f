# tests/test_scoring.py

import pytest
from sharing_detector.analyzer.scoring import (
    SuspicionLevel, ScoringPolicy, DEFAULT_POLICY, score
)
from sharing_detector.analyzer.ttl import TTLStatus, classify


def test_router_behind_windows_line():
    status = classify([128, 127])
    level, confidence, reasons = score(status, 50, 500)
    assert status == TTLStatus.ROUTER_DETECTED
    assert confidence == 35
    assert level == SuspicionLevel.MEDIUM
    assert reasons == ["Router/NAT detected behind connection"]


def test_direct_unix_over_threshold():
    status = classify([64])
    level, confidence, reasons = score(status, 600, 500)
    assert status == TTLStatus.DIRECT_UNIX
    assert confidence == 30
    assert level == SuspicionLevel.MEDIUM
    assert reasons == ["Connection count 600 exceeds threshold 500"]


def test_two_operating_systems_is_high():
    status = classify([128, 64])
    level, confidence, reasons = score(status, 10, 500)
    assert status == TTLStatus.MULTIPLE_OS
    assert confidence == 70
    assert level == SuspicionLevel.HIGH
    assert reasons == ["Multiple devices detected via TTL fingerprinting"]


def test_no_evidence_is_low():
    level, confidence, reasons = score(TTLStatus.NO_DATA, 0, 500)
    assert (level, confidence, reasons) == (SuspicionLevel.LOW, 0, [])


def test_elevated_connection_count():
    level, confidence, reasons = score(TTLStatus.DIRECT_WINDOWS, 300, 500)
    assert confidence == 15
    assert level == SuspicionLevel.LOW
    assert reasons == ["Elevated connection count"]


def test_score_is_capped():
    level, confidence, _ = score(TTLStatus.DOUBLE_ROUTER, 10000, 500)
    assert confidence == 100
    assert level == SuspicionLevel.HIGH


def test_threshold_of_zero_disables_count_evidence():
    _, confidence, reasons = score(TTLStatus.DIRECT_UNIX, 10000, 0)
    assert confidence == 0
    assert reasons == []


@pytest.mark.parametrize("status", list(TTLStatus))
def test_more_connections_never_lowers_level(status):
    previous = None
    for count in range(0, 1200, 50):
        level, confidence, _ = score(status, count, 500)
        if previous is not None:
            assert level.rank >= previous[0].rank
            assert confidence >= previous[1]
        previous = (level, confidence)


def test_level_matches_bands():
    for status in TTLStatus:
        for count in (0, 299, 300, 499, 500, 5000):
            level, confidence, _ = score(status, count, 500)
            assert level == DEFAULT_POLICY.level_for(confidence)


def test_band_edges():
    assert DEFAULT_POLICY.level_for(0) == SuspicionLevel.LOW
    assert DEFAULT_POLICY.level_for(29) == SuspicionLevel.LOW
    assert DEFAULT_POLICY.level_for(30) == SuspicionLevel.MEDIUM
    assert DEFAULT_POLICY.level_for(69) == SuspicionLevel.MEDIUM
    assert DEFAULT_POLICY.level_for(70) == SuspicionLevel.HIGH
    assert DEFAULT_POLICY.level_for(100) == SuspicionLevel.HIGH


def test_suspicion_level_ordering():
    assert SuspicionLevel.HIGH.at_least(SuspicionLevel.MEDIUM)
    assert SuspicionLevel.MEDIUM.at_least(SuspicionLevel.MEDIUM)
    assert not SuspicionLevel.LOW.at_least(SuspicionLevel.MEDIUM)
    assert SuspicionLevel.parse(' High ') == SuspicionLevel.HIGH
    with pytest.raises(ValueError):
        SuspicionLevel.parse('critical')


def test_policy_from_config_overrides():
    policy = ScoringPolicy.from_config({
        'ttl_weights': {'router_detected': 50},
        'medium_band': 40,
        'bogus': 1
    })
    assert policy.ttl_weights[TTLStatus.ROUTER_DETECTED] == 50
    assert policy.ttl_weights[TTLStatus.MULTIPLE_OS] == 70
    level, confidence, _ = score(TTLStatus.ROUTER_DETECTED, 0, 500, policy)
    assert (level, confidence) == (SuspicionLevel.MEDIUM, 50)


def test_policy_rejects_inverted_bands():
    with pytest.raises(ValueError):
        ScoringPolicy.from_config({'medium_band': 80, 'high_band': 70})


def test_policy_from_empty_config_is_default():
    assert ScoringPolicy.from_config(None) == DEFAULT_POLICY
