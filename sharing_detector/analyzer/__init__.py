# sharing_detector/analyzer/__init__.py

from sharing_detector.analyzer.ttl import TTLStatus, classify
from sharing_detector.analyzer.scoring import SuspicionLevel, ScoringPolicy, DEFAULT_POLICY, score
from sharing_detector.analyzer.live import (
    Session, DetectionResult, AggregateStats, Snapshot, LiveAnalyzer, analyze
)

__all__ = [
    'TTLStatus', 'classify',
    'SuspicionLevel', 'ScoringPolicy', 'DEFAULT_POLICY', 'score',
    'Session', 'DetectionResult', 'AggregateStats', 'Snapshot', 'LiveAnalyzer', 'analyze'
]
