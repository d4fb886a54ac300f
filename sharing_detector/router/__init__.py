# sharing_detector/router/__init__.py

from sharing_detector.router.api_client import (
    RouterOSClient, RouterOSError, RouterOSConnectionError, RouterOSTrap
)
from sharing_detector.router.nas import NasDevice, NasRegistry, client_for
from sharing_detector.router.rules import NasRuleManager, NasRuleStatus, RuleResult, TTL_RULES

__all__ = [
    'RouterOSClient', 'RouterOSError', 'RouterOSConnectionError', 'RouterOSTrap',
    'NasDevice', 'NasRegistry', 'client_for',
    'NasRuleManager', 'NasRuleStatus', 'RuleResult', 'TTL_RULES'
]
