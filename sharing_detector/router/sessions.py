# sharing_detector/router/sessions.py
import re
import logging
from collections import defaultdict

import yaml

from sharing_detector.analyzer.live import Session
from sharing_detector.router.nas import NasDevice, client_for
from sharing_detector.utils.helpers import strip_port

logger = logging.getLogger(__name__)

PPP_ACTIVE_PATH = '/ppp/active'
CONNECTION_PATH = '/ip/firewall/connection'

TTL_MARK_PATTERN = re.compile(r'^ttl_(\d{1,3})$')


class ConnectionStats:
    """Flows seen in the router's connection table for one source address"""
    def __init__(self):
        self.total_connections = 0
        self.destinations = set()
        self.ttl_samples = []

    @property
    def unique_destinations(self):
        return len(self.destinations)


def collect_connection_stats(rows):
    """Group connection table rows by source address"""
    stats = defaultdict(ConnectionStats)
    for row in rows:
        src = strip_port(row.get('src-address'))
        if not src:
            continue
        entry = stats[src]
        entry.total_connections += 1

        dst = strip_port(row.get('dst-address'))
        if dst:
            entry.destinations.add(dst)

        match = TTL_MARK_PATTERN.match(row.get('connection-mark', ''))
        if match:
            entry.ttl_samples.append(int(match.group(1)))
    return stats


class SubscriberDirectory:
    """
    Subscriber details keyed by PPP username.

    Entries come from the `subscribers.entries` config map and, if set, the
    YAML file named by `subscribers.file`; inline entries win on conflict.
    Each entry may carry `subscriber_id`, `full_name` and `service_name`.
    """
    def __init__(self, entries=None):
        self._entries = {}
        for username, info in (entries or {}).items():
            if isinstance(info, dict):
                self._entries[str(username)] = dict(info)
            else:
                logger.warning(f"Ignoring subscriber entry for {username!r}: expected a mapping")

    @classmethod
    def from_config(cls, config):
        section = config.get('subscribers') or {}
        entries = {}
        path = section.get('file')
        if path:
            try:
                with open(path, 'r') as file:
                    loaded = yaml.safe_load(file) or {}
                if isinstance(loaded, dict):
                    entries.update(loaded)
                else:
                    logger.error(f"Subscriber directory {path} must map usernames to details")
            except (OSError, yaml.YAMLError) as e:
                logger.error(f"Failed to load subscriber directory from {path}: {e}")
        entries.update(section.get('entries') or {})
        return cls(entries)

    def __call__(self, username):
        return self._entries.get(username)

    def __len__(self):
        return len(self._entries)


class RouterOSSessionSource:
    """
    Lists the PPP sessions active on a NAS, enriched with connection counts
    and TTL samples taken from the connection marks set by the TTL rules.

    `directory` optionally maps a username to a dict with `subscriber_id`,
    `full_name` and `service_name`.
    """
    def __init__(self, client_factory=client_for, timeout=5.0, directory=None):
        self.client_factory = client_factory
        self.timeout = timeout
        self.directory = directory

    def _lookup(self, username):
        if self.directory is None:
            return {}
        return self.directory(username) or {}

    def list_active_sessions(self, nas: NasDevice):
        """Raises RouterOSError subclasses when the NAS cannot be queried"""
        client = self.client_factory(nas, self.timeout)
        try:
            client.connect()
            active = client.select(PPP_ACTIVE_PATH, proplist=['name', 'address', 'caller-id'])
            connections = client.select(CONNECTION_PATH,
                                        proplist=['src-address', 'dst-address', 'connection-mark'])
        finally:
            client.close()

        stats = collect_connection_stats(connections)
        sessions = []
        for entry in active:
            username = entry.get('name')
            address = entry.get('address')
            if not username or not address:
                continue

            info = self._lookup(username)
            conn = stats.get(address) or ConnectionStats()
            sessions.append(Session(
                username=username,
                full_name=info.get('full_name', ''),
                ip_address=address,
                mac_address=entry.get('caller-id', ''),
                nas_id=nas.id,
                nas_name=nas.name,
                connection_count=conn.total_connections,
                ttl_samples=list(conn.ttl_samples),
                subscriber_id=str(info.get('subscriber_id') or username),
                unique_destinations=conn.unique_destinations,
                service_name=info.get('service_name', '')
            ))

        logger.debug(f"{nas.name}: {len(sessions)} active sessions, {len(connections)} tracked connections")
        return sessions
