# sharing_detector/router/nas.py
import logging
from dataclasses import dataclass, field
from typing import Dict, List

from sharing_detector.exceptions import UnknownNAS
from sharing_detector.router.api_client import RouterOSClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NasDevice:
    """A router that terminates subscriber sessions, as listed in the configuration"""
    id: int
    name: str
    ip_address: str
    api_port: int = 8728
    username: str = 'admin'
    password: str = field(default='', repr=False)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'ip_address': self.ip_address,
            'api_port': self.api_port
        }


class NasRegistry:
    """Lookup of configured NAS devices by id"""
    def __init__(self, devices=None):
        self._devices: Dict[int, NasDevice] = {}
        for device in devices or []:
            self._devices[device.id] = device

    @classmethod
    def from_config(cls, config):
        default_port = config.get('router', {}).get('api_port', 8728)
        devices = []
        for entry in config.get('nas', []) or []:
            try:
                devices.append(NasDevice(
                    id=int(entry['id']),
                    name=entry.get('name') or f"nas-{entry['id']}",
                    ip_address=entry['ip_address'],
                    api_port=int(entry.get('api_port', default_port)),
                    username=entry.get('username', 'admin'),
                    password=entry.get('password', '')
                ))
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f"Skipping invalid NAS entry {entry!r}: {e}")
        return cls(devices)

    def get(self, nas_id) -> NasDevice:
        try:
            return self._devices[int(nas_id)]
        except (KeyError, TypeError, ValueError):
            raise UnknownNAS(nas_id)

    def all(self) -> List[NasDevice]:
        return sorted(self._devices.values(), key=lambda d: d.id)

    def __len__(self):
        return len(self._devices)


def client_for(nas: NasDevice, timeout=5.0):
    """Unconnected RouterOS API client for a NAS; use it as a context manager"""
    return RouterOSClient(nas.ip_address, nas.api_port, nas.username, nas.password, timeout=timeout)
