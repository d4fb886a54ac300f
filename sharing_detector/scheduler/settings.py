# sharing_detector/scheduler/settings.py
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sharing_detector.analyzer.scoring import SuspicionLevel
from sharing_detector.database.models import ScanSettingsRecord
from sharing_detector.exceptions import InvalidSettings
from sharing_detector.utils.helpers import parse_scan_time

logger = logging.getLogger(__name__)

RETENTION_CHOICES = (7, 14, 30, 60, 90)
SETTINGS_ROW_ID = 1


@dataclass(frozen=True)
class ScanSettings:
    enabled: bool = True
    scan_time: str = '03:00'
    retention_days: int = 30
    min_suspicion_level: SuspicionLevel = SuspicionLevel.MEDIUM
    connection_threshold: int = 500
    repeat_threshold: int = 3
    updated_at: Optional[datetime] = None

    @property
    def scan_hour_minute(self):
        return parse_scan_time(self.scan_time)

    def to_dict(self):
        return {
            'enabled': self.enabled,
            'scan_time': self.scan_time,
            'retention_days': self.retention_days,
            'min_suspicion_level': self.min_suspicion_level.value,
            'connection_threshold': self.connection_threshold,
            'repeat_threshold': self.repeat_threshold,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }

    @classmethod
    def from_record(cls, record):
        return cls(
            enabled=bool(record.enabled),
            scan_time=record.scan_time,
            retention_days=record.retention_days,
            min_suspicion_level=SuspicionLevel.parse(record.min_suspicion_level),
            connection_threshold=record.connection_threshold,
            repeat_threshold=record.repeat_threshold,
            updated_at=record.updated_at
        )


def _positive_int(value):
    if isinstance(value, bool):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    if number != value and not (isinstance(value, str) and value.strip().isdigit()):
        return None
    return number if number > 0 else None


def validate_changes(changes):
    """
    Check a partial settings update and return it normalised.

    Raises InvalidSettings listing every offending field.
    """
    if not isinstance(changes, dict):
        raise InvalidSettings({'body': 'expected an object'})

    errors = {}
    clean = {}
    for name, value in changes.items():
        if name == 'enabled':
            if isinstance(value, bool):
                clean[name] = value
            else:
                errors[name] = 'must be true or false'
        elif name == 'scan_time':
            parsed = parse_scan_time(value)
            if parsed is None:
                errors[name] = 'must be HH:MM (00:00-23:59)'
            else:
                clean[name] = f"{parsed[0]:02d}:{parsed[1]:02d}"
        elif name == 'retention_days':
            days = _positive_int(value)
            if days not in RETENTION_CHOICES:
                errors[name] = f"must be one of {', '.join(str(d) for d in RETENTION_CHOICES)}"
            else:
                clean[name] = days
        elif name == 'min_suspicion_level':
            try:
                clean[name] = SuspicionLevel.parse(value)
            except ValueError:
                errors[name] = 'must be low, medium or high'
        elif name in ('connection_threshold', 'repeat_threshold'):
            number = _positive_int(value)
            if number is None:
                errors[name] = 'must be a positive integer'
            else:
                clean[name] = number
        else:
            errors[name] = 'unknown setting'

    if errors:
        raise InvalidSettings(errors)
    return clean


class SettingsManager:
    """Reads and updates the singleton scan settings row"""
    def __init__(self, db_manager):
        self.db = db_manager
        self._lock = threading.Lock()

    def _load_or_create(self, session):
        record = session.get(ScanSettingsRecord, SETTINGS_ROW_ID)
        if record is None:
            defaults = ScanSettings()
            record = ScanSettingsRecord(
                id=SETTINGS_ROW_ID,
                enabled=defaults.enabled,
                scan_time=defaults.scan_time,
                retention_days=defaults.retention_days,
                min_suspicion_level=defaults.min_suspicion_level.value,
                connection_threshold=defaults.connection_threshold,
                repeat_threshold=defaults.repeat_threshold,
                updated_at=datetime.now()
            )
            session.add(record)
            session.flush()
            logger.info("Created default sharing detection settings")
        return record

    def get(self) -> ScanSettings:
        with self._lock:
            with self.db.session_scope() as session:
                return ScanSettings.from_record(self._load_or_create(session))

    def update(self, changes) -> ScanSettings:
        """Apply a validated partial update; nothing is written if validation fails"""
        clean = validate_changes(changes)
        with self._lock:
            with self.db.session_scope() as session:
                record = self._load_or_create(session)
                for name, value in clean.items():
                    if isinstance(value, SuspicionLevel):
                        value = value.value
                    setattr(record, name, value)
                record.updated_at = datetime.now()
                settings = ScanSettings.from_record(record)
        logger.info(f"Sharing detection settings updated: {', '.join(sorted(clean)) or 'no changes'}")
        return settings
