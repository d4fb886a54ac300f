# sharing_detector/database/__init__.py

from sharing_detector.database.models import (
    Base, DetectionHistory, ScanSettingsRecord
)
from sharing_detector.database.operations import DatabaseManager
from sharing_detector.database.history import HistoryStore

__all__ = [
    'Base', 'DetectionHistory', 'ScanSettingsRecord',
    'DatabaseManager', 'HistoryStore'
]
