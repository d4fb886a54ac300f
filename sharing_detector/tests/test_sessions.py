# tests/test_sessions.py

import pytest
from sharing_detector.router.api_client import RouterOSConnectionError
from sharing_detector.router.sessions import RouterOSSessionSource, SubscriberDirectory, collect_connection_stats


def test_connection_stats_grouped_by_source():
    stats = collect_connection_stats([
        {'src-address': '100.64.0.10:5000', 'dst-address': '1.1.1.1:443', 'connection-mark': 'ttl_128'},
        {'src-address': '100.64.0.10:5001', 'dst-address': '1.1.1.1:53', 'connection-mark': 'ttl_127'},
        {'src-address': '100.64.0.10:5002', 'dst-address': '8.8.8.8:53', 'connection-mark': 'qos_bulk'},
        {'src-address': '100.64.0.11:6000', 'dst-address': '8.8.8.8:53'},
        {'dst-address': '8.8.8.8:53'},
    ])

    first = stats['100.64.0.10']
    assert first.total_connections == 3
    assert first.unique_destinations == 2
    assert first.ttl_samples == [128, 127]
    assert stats['100.64.0.11'].ttl_samples == []
    assert len(stats) == 2


def test_sessions_built_from_ppp_and_connections(routers, nas_devices, client_factory, add_subscriber):
    add_subscriber(routers[1], 'alice', '100.64.0.10', ttl_marks=[128, 64], connections=5, caller_id='AA:BB')
    add_subscriber(routers[1], 'bob', '100.64.0.11')

    source = RouterOSSessionSource(client_factory=client_factory)
    sessions = source.list_active_sessions(nas_devices[0])

    alice, bob = sessions
    assert alice.username == 'alice'
    assert alice.subscriber_id == 'alice'
    assert alice.mac_address == 'AA:BB'
    assert alice.nas_id == 1
    assert alice.nas_name == 'nas-north'
    assert alice.connection_count == 5
    assert alice.ttl_samples == [128, 64]
    assert bob.connection_count == 0
    assert bob.ttl_samples == []
    assert not routers[1].connected


def test_directory_enriches_sessions(routers, nas_devices, client_factory, add_subscriber):
    add_subscriber(routers[1], 'alice', '100.64.0.10')
    directory = {'alice': {'subscriber_id': 42, 'full_name': 'Alice A.', 'service_name': '100M'}}

    source = RouterOSSessionSource(client_factory=client_factory, directory=directory.get)
    session = source.list_active_sessions(nas_devices[0])[0]
    assert session.subscriber_id == '42'
    assert session.full_name == 'Alice A.'
    assert session.service_name == '100M'


def test_unreachable_router_raises(routers, nas_devices, client_factory):
    routers[1].fail_connect = True
    source = RouterOSSessionSource(client_factory=client_factory)
    with pytest.raises(RouterOSConnectionError):
        source.list_active_sessions(nas_devices[0])


def test_subscriber_directory_from_config(tmp_path):
    listing = tmp_path / 'subscribers.yaml'
    listing.write_text(
        "alice:\n  subscriber_id: 7\n  full_name: Alice From File\n"
        "bob:\n  full_name: Bob B.\n"
    )
    directory = SubscriberDirectory.from_config({'subscribers': {
        'file': str(listing),
        'entries': {'alice': {'subscriber_id': 42, 'full_name': 'Alice A.'}, 'broken': 'x'}
    }})

    assert len(directory) == 2
    assert directory('alice') == {'subscriber_id': 42, 'full_name': 'Alice A.'}
    assert directory('bob') == {'full_name': 'Bob B.'}
    assert directory('carol') is None


def test_missing_directory_file_is_not_fatal(tmp_path):
    directory = SubscriberDirectory.from_config({'subscribers': {'file': str(tmp_path / 'absent.yaml')}})
    assert len(directory) == 0
    assert len(SubscriberDirectory.from_config({})) == 0
