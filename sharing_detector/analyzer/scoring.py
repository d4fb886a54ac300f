# sharing_detector/analyzer/scoring.py
import enum
import logging
from dataclasses import dataclass, field, fields, replace
from typing import Dict, List, Tuple

from sharing_detector.analyzer.ttl import TTLStatus

logger = logging.getLogger(__name__)

MULTIPLE_DEVICES_REASON = "Multiple devices detected via TTL fingerprinting"
ROUTER_REASON = "Router/NAT detected behind connection"
ELEVATED_CONNECTIONS_REASON = "Elevated connection count"


class SuspicionLevel(enum.Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]

    def at_least(self, other: 'SuspicionLevel') -> bool:
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value) -> 'SuspicionLevel':
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


_LEVEL_RANK = {
    SuspicionLevel.LOW: 1,
    SuspicionLevel.MEDIUM: 2,
    SuspicionLevel.HIGH: 3,
}


def _default_ttl_weights():
    return {
        TTLStatus.DOUBLE_ROUTER: 70,
        TTLStatus.MULTIPLE_OS: 70,
        TTLStatus.ROUTER_DETECTED: 35,
    }


@dataclass(frozen=True)
class ScoringPolicy:
    """
    Weights and bands used to turn evidence into a confidence score.

    Evidence of several devices behind one line weighs 70 rather than 60 so
    that it reaches the high band on its own: a Windows and a Unix host on
    the same connection with little traffic is scored 70 and rated high.
    Lower it under `scoring.ttl_weights` to make such lines medium.
    """
    ttl_weights: Dict[TTLStatus, int] = field(default_factory=_default_ttl_weights)
    over_threshold_weight: int = 30
    elevated_weight: int = 15
    elevated_ratio: float = 0.6
    high_band: int = 70
    medium_band: int = 30
    max_score: int = 100

    def level_for(self, score: int) -> SuspicionLevel:
        if score >= self.high_band:
            return SuspicionLevel.HIGH
        if score >= self.medium_band:
            return SuspicionLevel.MEDIUM
        return SuspicionLevel.LOW

    @classmethod
    def from_config(cls, section) -> 'ScoringPolicy':
        """Build a policy from the `scoring` config section, keeping defaults for anything missing"""
        policy = cls()
        if not section:
            return policy

        overrides = {}
        scalar_names = {f.name for f in fields(cls)} - {'ttl_weights'}
        for name, value in section.items():
            if name == 'ttl_weights':
                weights = dict(policy.ttl_weights)
                for status_name, weight in (value or {}).items():
                    weights[TTLStatus(status_name)] = int(weight)
                overrides['ttl_weights'] = weights
            elif name in scalar_names:
                overrides[name] = float(value) if name == 'elevated_ratio' else int(value)
            else:
                logger.warning(f"Ignoring unknown scoring option: {name}")

        policy = replace(policy, **overrides)
        if not policy.medium_band < policy.high_band:
            raise ValueError("scoring.medium_band must be lower than scoring.high_band")
        return policy


DEFAULT_POLICY = ScoringPolicy()


def _ttl_reason(status: TTLStatus) -> str:
    if status.indicates_multiple_devices:
        return MULTIPLE_DEVICES_REASON
    return ROUTER_REASON


def score(status: TTLStatus, connection_count: int, threshold: int,
          policy: ScoringPolicy = DEFAULT_POLICY) -> Tuple[SuspicionLevel, int, List[str]]:
    """
    Combine TTL evidence and connection count into (level, confidence score, reasons).

    Pure: identical inputs always give identical output.
    """
    total = 0
    reasons: List[str] = []

    def apply(weight, reason):
        nonlocal total
        if weight <= 0:
            return
        total += weight
        if reason not in reasons:
            reasons.append(reason)

    # TTL evidence first
    apply(policy.ttl_weights.get(status, 0), _ttl_reason(status))

    # Then connection count evidence
    if threshold > 0:
        if connection_count >= threshold:
            apply(policy.over_threshold_weight,
                  f"Connection count {connection_count} exceeds threshold {threshold}")
        elif connection_count >= threshold * policy.elevated_ratio:
            apply(policy.elevated_weight, ELEVATED_CONNECTIONS_REASON)

    total = min(total, policy.max_score)
    return policy.level_for(total), total, reasons
