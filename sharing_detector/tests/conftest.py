# tests/conftest.py

from datetime import datetime

import pytest

from sharing_detector.analyzer.live import LiveAnalyzer
from sharing_detector.app import AppContext
from sharing_detector.database.history import HistoryStore
from sharing_detector.database.operations import DatabaseManager
from sharing_detector.router.api_client import RouterOSConnectionError, RouterOSTrap
from sharing_detector.router.nas import NasDevice, NasRegistry
from sharing_detector.router.rules import MANGLE_PATH, NasRuleManager
from sharing_detector.router.sessions import PPP_ACTIVE_PATH, CONNECTION_PATH, RouterOSSessionSource
from sharing_detector.scheduler.scanner import ScanScheduler
from sharing_detector.scheduler.settings import SettingsManager

NOW = datetime(2024, 5, 15, 12, 0, 0)


class FakeRouter:
    """In-memory RouterOS stand-in with switches for the failures a real router produces"""
    def __init__(self, mangle=None, ppp_active=None, connections=None):
        self.tables = {
            MANGLE_PATH: [dict(row) for row in mangle or []],
            PPP_ACTIVE_PATH: [dict(row) for row in ppp_active or []],
            CONNECTION_PATH: [dict(row) for row in connections or []],
        }
        self.fail_connect = False
        self.trap_on_ttl = set()
        self.trap_on_remove = set()
        self.drop_after_adds = None
        self.connected = False
        self.connect_count = 0
        self.add_count = 0
        self._next_id = 100

    def connect(self):
        if self.fail_connect:
            raise RouterOSConnectionError("cannot connect: timed out")
        self.connected = True
        self.connect_count += 1

    def close(self):
        self.connected = False

    def _require_connection(self):
        if not self.connected:
            raise RouterOSConnectionError("not connected")

    def select(self, path, query=None, proplist=None):
        self._require_connection()
        return [dict(row) for row in self.tables[path]]

    def add(self, path, attrs):
        self._require_connection()
        if self.drop_after_adds is not None and self.add_count >= self.drop_after_adds:
            self.connected = False
            raise RouterOSConnectionError("connection closed by router")
        ttl = int(attrs.get('ttl', 'equal:0').split(':')[1])
        if ttl in self.trap_on_ttl:
            raise RouterOSTrap("failure: cannot add rule")
        self.add_count += 1
        item_id = f"*{self._next_id:X}"
        self._next_id += 1
        self.tables[path].append(dict(attrs, **{'.id': item_id}))
        return item_id

    def remove(self, path, item_id):
        self._require_connection()
        if item_id in self.trap_on_remove:
            raise RouterOSTrap("no such item")
        self.tables[path] = [row for row in self.tables[path] if row['.id'] != item_id]

    def mangle_comments(self):
        return sorted(row.get('comment', '') for row in self.tables[MANGLE_PATH])


@pytest.fixture
def nas_devices():
    return [
        NasDevice(id=1, name='nas-north', ip_address='10.0.0.1'),
        NasDevice(id=2, name='nas-south', ip_address='10.0.0.2'),
    ]


@pytest.fixture
def nas_registry(nas_devices):
    return NasRegistry(nas_devices)


@pytest.fixture
def routers():
    return {1: FakeRouter(), 2: FakeRouter()}


@pytest.fixture
def client_factory(routers):
    return lambda nas, timeout=5.0: routers[nas.id]


@pytest.fixture
def rule_manager(client_factory):
    return NasRuleManager(comment_prefix='ACME', client_factory=client_factory)


@pytest.fixture
def db():
    return DatabaseManager('sqlite://')


@pytest.fixture
def history(db):
    return HistoryStore(db, clock=lambda: NOW)


@pytest.fixture
def settings_manager(db):
    return SettingsManager(db)


@pytest.fixture
def live_analyzer(nas_registry, client_factory):
    source = RouterOSSessionSource(client_factory=client_factory)
    return LiveAnalyzer(nas_registry, source, nas_timeout=2)


@pytest.fixture
def scheduler(live_analyzer, history, settings_manager):
    return ScanScheduler(live_analyzer, history, settings_manager, check_interval=1, clock=lambda: NOW)


@pytest.fixture
def context(db, nas_registry, rule_manager, live_analyzer, history, settings_manager, scheduler):
    return AppContext(
        config={},
        db=db,
        nas_registry=nas_registry,
        rule_manager=rule_manager,
        live_analyzer=live_analyzer,
        history=history,
        settings=settings_manager,
        scheduler=scheduler,
        max_workers=2
    )


def subscriber(router, username, address, ttl_marks=(), connections=0, caller_id=''):
    """Register an active PPP session on a fake router together with its tracked flows"""
    router.tables[PPP_ACTIVE_PATH].append({'name': username, 'address': address, 'caller-id': caller_id})
    marks = list(ttl_marks)
    for i in range(max(connections, len(marks))):
        row = {
            'src-address': f"{address}:{40000 + i}",
            'dst-address': f"93.184.{i // 250}.{i % 250}:443",
        }
        if i < len(marks):
            row['connection-mark'] = f"ttl_{marks[i]}"
        router.tables[CONNECTION_PATH].append(row)


@pytest.fixture
def add_subscriber():
    return subscriber
