# sharing_detector/analyzer/live.py
import logging
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from typing import List, Optional

from sharing_detector.analyzer.ttl import TTLStatus, classify, display_values
from sharing_detector.analyzer.scoring import SuspicionLevel, ScoringPolicy, DEFAULT_POLICY, score
from sharing_detector.exceptions import UnreachableNAS
from sharing_detector.router.api_client import RouterOSError

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.05


@dataclass
class Session:
    """A subscriber session currently connected to a NAS"""
    username: str
    ip_address: str
    nas_id: int
    nas_name: str = ''
    full_name: str = ''
    mac_address: str = ''
    connection_count: int = 0
    ttl_samples: List[int] = field(default_factory=list)
    subscriber_id: Optional[str] = None
    unique_destinations: int = 0
    service_name: str = ''


@dataclass
class DetectionResult:
    username: str
    ip_address: str
    nas_id: int
    connection_count: int
    ttl_status: TTLStatus
    ttl_values: List[int]
    suspicion_level: SuspicionLevel
    confidence_score: int
    reasons: List[str]
    subscriber_id: str = ''
    full_name: str = ''
    nas_name: str = ''
    mac_address: str = ''
    unique_destinations: int = 0
    service_name: str = ''

    def to_dict(self):
        return {
            'subscriber_id': self.subscriber_id,
            'username': self.username,
            'full_name': self.full_name,
            'ip_address': self.ip_address,
            'mac_address': self.mac_address,
            'nas_id': self.nas_id,
            'nas_name': self.nas_name,
            'service_name': self.service_name,
            'connection_count': self.connection_count,
            'unique_destinations': self.unique_destinations,
            'ttl_status': self.ttl_status.value,
            'ttl_values': self.ttl_values,
            'suspicion_level': self.suspicion_level.value,
            'confidence_score': self.confidence_score,
            'reasons': self.reasons
        }


@dataclass
class AggregateStats:
    total_online: int = 0
    suspicious_count: int = 0
    high_risk_count: int = 0
    router_detected: int = 0
    high_connections: int = 0

    def to_dict(self):
        return {
            'total_online': self.total_online,
            'suspicious_count': self.suspicious_count,
            'high_risk_count': self.high_risk_count,
            'router_detected': self.router_detected,
            'high_connections': self.high_connections
        }


@dataclass
class Snapshot:
    results: List[DetectionResult]
    stats: AggregateStats
    unreachable_nas: List[dict] = field(default_factory=list)

    def to_dict(self):
        return {
            'results': [r.to_dict() for r in self.results],
            'stats': self.stats.to_dict(),
            'unreachable_nas': self.unreachable_nas
        }


def evaluate_session(session: Session, threshold: int, policy: ScoringPolicy = DEFAULT_POLICY) -> DetectionResult:
    """Classify and score one session"""
    status = classify(session.ttl_samples)
    level, confidence, reasons = score(status, session.connection_count, threshold, policy)
    return DetectionResult(
        username=session.username,
        ip_address=session.ip_address,
        nas_id=session.nas_id,
        connection_count=session.connection_count,
        ttl_status=status,
        ttl_values=display_values(session.ttl_samples),
        suspicion_level=level,
        confidence_score=confidence,
        reasons=reasons,
        subscriber_id=session.subscriber_id or session.username,
        full_name=session.full_name,
        nas_name=session.nas_name,
        mac_address=session.mac_address,
        unique_destinations=session.unique_destinations,
        service_name=session.service_name
    )


def analyze(sessions, settings, policy: ScoringPolicy = DEFAULT_POLICY):
    """
    Evaluate every session and compute aggregate stats.

    Results keep the order of `sessions`; sorting is left to the caller.
    """
    threshold = settings.connection_threshold
    results = [evaluate_session(s, threshold, policy) for s in sessions]

    stats = AggregateStats(total_online=len(results))
    for result in results:
        if result.suspicion_level.at_least(SuspicionLevel.MEDIUM):
            stats.suspicious_count += 1
        if result.suspicion_level == SuspicionLevel.HIGH:
            stats.high_risk_count += 1
        if result.ttl_status.indicates_router:
            stats.router_detected += 1
        if result.connection_count >= threshold:
            stats.high_connections += 1

    return results, stats


class LiveAnalyzer:
    """
    Pulls the current sessions from every configured NAS and scores them.

    NAS devices are queried in parallel; a device that errors or does not
    answer within `nas_timeout` seconds contributes no sessions and is listed
    in the snapshot's `unreachable_nas`.
    """
    def __init__(self, nas_registry, session_source, policy: ScoringPolicy = DEFAULT_POLICY,
                 nas_timeout=10, max_workers=8):
        self.nas_registry = nas_registry
        self.session_source = session_source
        self.policy = policy
        self.nas_timeout = nas_timeout
        self.max_workers = max_workers

    def _query(self, nas, started):
        started[nas.id] = time.monotonic()
        return self.session_source.list_active_sessions(nas)

    def collect_sessions(self):
        """
        Return (sessions, unreachable) across all NAS devices.

        Each device's timeout runs from the moment its query starts, so
        devices waiting for a free worker are not charged for the wait.
        A device that never gets a worker within the budget of the whole
        fan-out is reported as unreachable too.
        """
        devices = self.nas_registry.all()
        if not devices:
            return [], []

        workers = min(self.max_workers, len(devices))
        batches = -(-len(devices) // workers)
        overall_deadline = time.monotonic() + self.nas_timeout * (batches + 1)

        sessions, unreachable = [], []
        started = {}
        pool = ThreadPoolExecutor(max_workers=workers)
        try:
            pending = {pool.submit(self._query, nas, started): nas for nas in devices}
            outcomes = {}
            while pending:
                wait(list(pending), timeout=POLL_INTERVAL, return_when=FIRST_COMPLETED)

                now = time.monotonic()
                for future in list(pending):
                    nas = pending[future]
                    if future.done():
                        outcomes[nas.id] = future
                    elif nas.id in started and now - started[nas.id] >= self.nas_timeout:
                        outcomes[nas.id] = f"no answer within {self.nas_timeout}s"
                    elif now >= overall_deadline:
                        future.cancel()
                        outcomes[nas.id] = "not queried: all workers busy"
                    else:
                        continue
                    del pending[future]

            for nas in devices:
                outcome = outcomes[nas.id]
                if isinstance(outcome, str):
                    error = UnreachableNAS(nas.id, nas.name, outcome)
                else:
                    try:
                        sessions.extend(outcome.result())
                        continue
                    except (RouterOSError, OSError) as e:
                        error = UnreachableNAS(nas.id, nas.name, e)
                logger.warning(str(error))
                unreachable.append(error.to_dict())
        finally:
            pool.shutdown(wait=False)

        return sessions, unreachable

    def snapshot(self, settings, threshold=None) -> Snapshot:
        start = time.time()
        sessions, unreachable = self.collect_sessions()

        if threshold is not None:
            settings = replace(settings, connection_threshold=threshold)

        results, stats = analyze(sessions, settings, self.policy)
        logger.info(
            f"Analyzed {stats.total_online} sessions in {time.time() - start:.2f}s: "
            f"{stats.suspicious_count} suspicious, {stats.high_risk_count} high risk, "
            f"{len(unreachable)} NAS unreachable"
        )
        return Snapshot(results=results, stats=stats, unreachable_nas=unreachable)

    def subscriber_detail(self, username, settings) -> Optional[DetectionResult]:
        """Live result for one subscriber, or None if they are not online"""
        sessions, _ = self.collect_sessions()
        for session in sessions:
            if session.username == username:
                return evaluate_session(session, settings.connection_threshold, self.policy)
        return None
