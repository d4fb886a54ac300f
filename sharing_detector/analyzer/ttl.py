# sharing_detector/analyzer/ttl.py
import enum
from typing import Iterable

# Initial TTL emitted by each stack family
WINDOWS_TTL = 128
UNIX_TTL = 64

# baseline -> value seen one routing hop behind a NAT
FAMILIES = {
    WINDOWS_TTL: WINDOWS_TTL - 1,
    UNIX_TTL: UNIX_TTL - 1,
}

RECOGNIZED_TTLS = frozenset(FAMILIES) | frozenset(FAMILIES.values())


class TTLStatus(enum.Enum):
    """Fingerprint of a session derived from the distinct TTL values seen on its traffic"""
    NO_DATA = 'no_data'
    DIRECT_WINDOWS = 'direct_windows'
    ROUTER_WINDOWS = 'router_windows'
    DIRECT_UNIX = 'direct_unix'
    ROUTER_UNIX = 'router_unix'
    MULTIPLE_OS = 'multiple_os'
    ROUTER_DETECTED = 'router_detected'
    DOUBLE_ROUTER = 'double_router'

    @property
    def indicates_router(self) -> bool:
        return self in (
            TTLStatus.ROUTER_WINDOWS,
            TTLStatus.ROUTER_UNIX,
            TTLStatus.ROUTER_DETECTED,
            TTLStatus.DOUBLE_ROUTER,
        )

    @property
    def indicates_multiple_devices(self) -> bool:
        return self in (TTLStatus.MULTIPLE_OS, TTLStatus.DOUBLE_ROUTER)


_SINGLE_VALUE_STATUS = {
    WINDOWS_TTL: TTLStatus.DIRECT_WINDOWS,
    WINDOWS_TTL - 1: TTLStatus.ROUTER_WINDOWS,
    UNIX_TTL: TTLStatus.DIRECT_UNIX,
    UNIX_TTL - 1: TTLStatus.ROUTER_UNIX,
}


def _family_of(ttl):
    for baseline, decremented in FAMILIES.items():
        if ttl in (baseline, decremented):
            return baseline
    return None


def classify(ttl_samples: Iterable[int]) -> TTLStatus:
    """
    Map the TTL samples of one session to a TTLStatus.

    Only the set of distinct values matters, so a single packet with an
    unusual TTL weighs as much as thousands. Values that are neither a
    baseline nor one hop below it are ignored.
    """
    distinct = {int(ttl) for ttl in ttl_samples} & RECOGNIZED_TTLS
    if not distinct:
        return TTLStatus.NO_DATA

    families = {_family_of(ttl) for ttl in distinct}

    if len(families) > 1:
        if distinct == RECOGNIZED_TTLS:
            return TTLStatus.DOUBLE_ROUTER
        return TTLStatus.MULTIPLE_OS

    if len(distinct) == 1:
        return _SINGLE_VALUE_STATUS[distinct.pop()]

    # Baseline and decremented value of the same family: one device direct, one behind a router
    return TTLStatus.ROUTER_DETECTED


def display_values(ttl_samples: Iterable[int]):
    """Distinct TTL values in ascending order, unrecognised ones included"""
    return sorted({int(ttl) for ttl in ttl_samples})
