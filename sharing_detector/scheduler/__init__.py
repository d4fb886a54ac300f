# sharing_detector/scheduler/__init__.py

from sharing_detector.scheduler.settings import ScanSettings, SettingsManager
from sharing_detector.scheduler.scanner import ScanScheduler, ScanState, ScanSummary

__all__ = ['ScanSettings', 'SettingsManager', 'ScanScheduler', 'ScanState', 'ScanSummary']
