# tests/test_rules.py

import pytest
from sharing_detector.exceptions import PartialRuleApplication, UnreachableNAS
from sharing_detector.router.rules import MANGLE_PATH, TTL_RULES, EXPECTED_RULE_COUNT

EXPECTED_COMMENTS = sorted([
    'ACME-TTL-Detection - Windows behind router',
    'ACME-TTL-Detection - Linux/Android behind router',
    'ACME-TTL-Detection - Direct Windows',
    'ACME-TTL-Detection - Direct Linux/Android',
])


def test_generate_creates_four_marking_rules(rule_manager, routers, nas_devices):
    result = rule_manager.generate_rules(nas_devices[0])

    assert sorted(result.created) == [63, 64, 127, 128]
    assert result.rule_count == EXPECTED_RULE_COUNT
    assert result.success
    assert routers[1].mangle_comments() == EXPECTED_COMMENTS

    rule = next(r for r in routers[1].tables[MANGLE_PATH] if r['new-connection-mark'] == 'ttl_127')
    assert rule['chain'] == 'prerouting'
    assert rule['ttl'] == 'equal:127'
    assert rule['action'] == 'mark-connection'
    assert rule['passthrough'] == 'yes'


def test_generate_is_idempotent(rule_manager, routers, nas_devices):
    rule_manager.generate_rules(nas_devices[0])
    second = rule_manager.generate_rules(nas_devices[0])

    assert second.created == []
    assert sorted(second.existing) == [63, 64, 127, 128]
    assert len(routers[1].tables[MANGLE_PATH]) == 4
    assert routers[1].add_count == 4


def test_generate_only_adds_missing_rules(rule_manager, routers, nas_devices):
    routers[1].tables[MANGLE_PATH].append({
        '.id': '*1', 'comment': rule_manager.rule_comment(TTL_RULES[0])
    })
    result = rule_manager.generate_rules(nas_devices[0])

    assert result.existing == [TTL_RULES[0].ttl]
    assert len(result.created) == 3
    assert len(routers[1].tables[MANGLE_PATH]) == 4


def test_partial_application_then_retry(rule_manager, routers, nas_devices):
    routers[1].trap_on_ttl = {63}
    with pytest.raises(PartialRuleApplication) as excinfo:
        rule_manager.generate_rules(nas_devices[0])
    partial = excinfo.value.result
    assert partial.rule_count == 3
    assert partial.expected_count == 4
    assert len(partial.errors) == 1

    routers[1].trap_on_ttl = set()
    result = rule_manager.generate_rules(nas_devices[0])
    assert result.created == [63]
    assert result.rule_count == 4
    assert len(routers[1].tables[MANGLE_PATH]) == 4


def test_connection_lost_midway(rule_manager, routers, nas_devices):
    routers[1].drop_after_adds = 2
    with pytest.raises(PartialRuleApplication) as excinfo:
        rule_manager.generate_rules(nas_devices[0])
    assert excinfo.value.result.rule_count == 2

    routers[1].drop_after_adds = None
    assert rule_manager.generate_rules(nas_devices[0]).rule_count == 4


def test_generate_on_unreachable_nas(rule_manager, routers, nas_devices):
    routers[1].fail_connect = True
    with pytest.raises(UnreachableNAS) as excinfo:
        rule_manager.generate_rules(nas_devices[0])
    assert excinfo.value.nas_id == 1
    assert routers[1].tables[MANGLE_PATH] == []


def test_remove_deletes_only_tagged_rules(rule_manager, routers, nas_devices):
    routers[1].tables[MANGLE_PATH].append({'.id': '*1', 'comment': 'customer QoS'})
    rule_manager.generate_rules(nas_devices[0])

    result = rule_manager.remove_rules(nas_devices[0])
    assert result.removed_count == 4
    assert result.rule_count == 0
    assert routers[1].mangle_comments() == ['customer QoS']


def test_remove_without_rules_is_noop(rule_manager, nas_devices):
    result = rule_manager.remove_rules(nas_devices[0])
    assert result.removed_count == 0
    assert result.success


def test_remove_failure_on_one_rule(rule_manager, routers, nas_devices):
    rule_manager.generate_rules(nas_devices[0])
    stuck = routers[1].tables[MANGLE_PATH][0]['.id']
    routers[1].trap_on_remove = {stuck}

    result = rule_manager.remove_rules(nas_devices[0])
    assert result.removed_count == 3
    assert result.rule_count == 1
    assert not result.success


def test_status_reports_each_nas(rule_manager, routers, nas_devices):
    rule_manager.generate_rules(nas_devices[0])
    routers[2].fail_connect = True

    statuses = rule_manager.get_all_statuses(nas_devices)
    assert [s.nas_id for s in statuses] == [1, 2]
    assert statuses[0].rules_configured
    assert statuses[0].rule_count == 4
    assert statuses[0].error is None
    assert not statuses[1].rules_configured
    assert statuses[1].error


def test_status_with_incomplete_rules(rule_manager, routers, nas_devices):
    routers[1].trap_on_ttl = {64, 128}
    with pytest.raises(PartialRuleApplication):
        rule_manager.generate_rules(nas_devices[0])

    status = rule_manager.get_rule_status(nas_devices[0])
    assert status.rule_count == 2
    assert not status.rules_configured
