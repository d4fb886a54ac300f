# sharing_detector/router/rules.py
"""
Provisioning of the TTL marking rules that make sharing detection possible.

The desired state is four mangle rules that mark new connections by the TTL
of their first packet. Every rule carries a comment built from a common tag,
and the comment is the rule's identity: generation adds only the rules whose
comment is missing and removal deletes only tagged rules, so both operations
can be retried safely.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional

from sharing_detector.exceptions import UnreachableNAS, PartialRuleApplication
from sharing_detector.router.api_client import RouterOSConnectionError, RouterOSTrap
from sharing_detector.router.nas import NasDevice, client_for

logger = logging.getLogger(__name__)

MANGLE_PATH = '/ip/firewall/mangle'


@dataclass(frozen=True)
class TTLRule:
    ttl: int
    mark: str
    description: str


TTL_RULES = (
    TTLRule(127, 'ttl_127', 'Windows behind router'),
    TTLRule(63, 'ttl_63', 'Linux/Android behind router'),
    TTLRule(128, 'ttl_128', 'Direct Windows'),
    TTLRule(64, 'ttl_64', 'Direct Linux/Android'),
)

EXPECTED_RULE_COUNT = len(TTL_RULES)


@dataclass
class NasRuleStatus:
    nas_id: int
    nas_name: str
    nas_ip_address: str
    rules_configured: bool = False
    rule_count: int = 0
    error: Optional[str] = None

    def to_dict(self):
        return {
            'nas_id': self.nas_id,
            'nas_name': self.nas_name,
            'nas_ip_address': self.nas_ip_address,
            'rules_configured': self.rules_configured,
            'rule_count': self.rule_count,
            'error': self.error
        }


@dataclass
class RuleResult:
    """Outcome of a generate or remove operation on one NAS"""
    nas_id: int
    nas_name: str
    created: List[int] = field(default_factory=list)
    existing: List[int] = field(default_factory=list)
    removed_count: int = 0
    errors: List[str] = field(default_factory=list)
    rule_count: int = 0
    expected_count: int = EXPECTED_RULE_COUNT

    @property
    def success(self):
        return not self.errors

    def to_dict(self):
        return {
            'nas_id': self.nas_id,
            'nas_name': self.nas_name,
            'created': self.created,
            'existing': self.existing,
            'created_count': len(self.created),
            'removed_count': self.removed_count,
            'rule_count': self.rule_count,
            'expected_count': self.expected_count,
            'errors': self.errors
        }


class NasRuleManager:
    """
    Reads, creates and removes TTL marking rules on NAS routers.

    Mutations on one NAS are serialised; different NAS devices can be
    handled concurrently.
    """
    def __init__(self, comment_prefix='ISP', client_factory=client_for, timeout=5.0):
        self.tag = f"{comment_prefix or 'ISP'}-TTL-Detection"
        self.client_factory = client_factory
        self.timeout = timeout
        self._locks = {}
        self._locks_guard = threading.Lock()

    def rule_comment(self, rule: TTLRule) -> str:
        return f"{self.tag} - {rule.description}"

    def _lock_for(self, nas_id):
        with self._locks_guard:
            if nas_id not in self._locks:
                self._locks[nas_id] = threading.Lock()
            return self._locks[nas_id]

    def _connect(self, nas: NasDevice):
        client = self.client_factory(nas, self.timeout)
        try:
            client.connect()
        except RouterOSConnectionError as e:
            raise UnreachableNAS(nas.id, nas.name, e) from e
        return client

    def _tagged_rules(self, client):
        rows = client.select(MANGLE_PATH, proplist=['.id', 'comment', 'chain', 'ttl', 'new-connection-mark'])
        return [row for row in rows if self.tag in row.get('comment', '')]

    def get_rule_status(self, nas: NasDevice) -> NasRuleStatus:
        """Count tagged rules on a NAS. Never raises; failures are reported in `error`."""
        status = NasRuleStatus(nas_id=nas.id, nas_name=nas.name, nas_ip_address=nas.ip_address)
        try:
            client = self._connect(nas)
            try:
                count = len(self._tagged_rules(client))
            finally:
                client.close()
        except UnreachableNAS as e:
            status.error = e.reason
            logger.warning(f"TTL rule status unavailable for {nas.name}: {e.reason}")
            return status
        except (RouterOSConnectionError, RouterOSTrap) as e:
            status.error = str(e)
            logger.warning(f"TTL rule status unavailable for {nas.name}: {e}")
            return status

        status.rule_count = count
        status.rules_configured = count >= EXPECTED_RULE_COUNT
        return status

    def get_all_statuses(self, nas_list, max_workers=8) -> List[NasRuleStatus]:
        nas_list = list(nas_list)
        if not nas_list:
            return []
        with ThreadPoolExecutor(max_workers=min(max_workers, len(nas_list))) as pool:
            return list(pool.map(self.get_rule_status, nas_list))

    def generate_rules(self, nas: NasDevice) -> RuleResult:
        """
        Create whichever of the four TTL rules are missing on a NAS.

        Raises UnreachableNAS if the router cannot be reached or its rules
        cannot be listed, and PartialRuleApplication if fewer than four
        rules are present afterwards. Calling again completes the set.
        """
        with self._lock_for(nas.id):
            result = RuleResult(nas_id=nas.id, nas_name=nas.name)
            client = self._connect(nas)
            try:
                try:
                    present = {row.get('comment') for row in self._tagged_rules(client)}
                except (RouterOSConnectionError, RouterOSTrap) as e:
                    raise UnreachableNAS(nas.id, nas.name, e) from e

                try:
                    for rule in TTL_RULES:
                        comment = self.rule_comment(rule)
                        if comment in present:
                            result.existing.append(rule.ttl)
                            continue
                        try:
                            client.add(MANGLE_PATH, {
                                'chain': 'prerouting',
                                'ttl': f'equal:{rule.ttl}',
                                'action': 'mark-connection',
                                'new-connection-mark': rule.mark,
                                'passthrough': 'yes',
                                'comment': comment
                            })
                        except RouterOSTrap as e:
                            result.errors.append(f"TTL={rule.ttl}: {e}")
                            logger.error(f"Failed to create TTL={rule.ttl} rule on {nas.name}: {e}")
                            continue
                        present.add(comment)
                        result.created.append(rule.ttl)
                        logger.info(f"Created TTL={rule.ttl} mangle rule with mark={rule.mark} on {nas.name}")
                except RouterOSConnectionError as e:
                    result.errors.append(str(e))
                    logger.error(f"Lost connection to {nas.name} while creating TTL rules: {e}")
            finally:
                client.close()

            result.rule_count = sum(1 for rule in TTL_RULES if self.rule_comment(rule) in present)
            if result.rule_count < result.expected_count:
                raise PartialRuleApplication(result)

            logger.info(
                f"TTL rules on {nas.name}: {len(result.created)} created, "
                f"{len(result.existing)} already present"
            )
            return result

    def remove_rules(self, nas: NasDevice) -> RuleResult:
        """Delete every tagged rule on a NAS; finding none is a successful no-op"""
        with self._lock_for(nas.id):
            result = RuleResult(nas_id=nas.id, nas_name=nas.name, expected_count=0)
            client = self._connect(nas)
            try:
                tagged = self._tagged_rules(client)
                for row in tagged:
                    try:
                        client.remove(MANGLE_PATH, row['.id'])
                        result.removed_count += 1
                    except RouterOSTrap as e:
                        result.errors.append(f"{row.get('comment', row['.id'])}: {e}")
                        logger.error(f"Failed to remove mangle rule {row['.id']} on {nas.name}: {e}")
                result.rule_count = len(tagged) - result.removed_count
            except (RouterOSConnectionError, RouterOSTrap) as e:
                raise UnreachableNAS(nas.id, nas.name, e) from e
            finally:
                client.close()

            logger.info(f"Removed {result.removed_count} TTL detection rules from {nas.name}")
            return result
