# sharing_detector/api/__init__.py

from sharing_detector.api.server import SharingAPI, create_app

__all__ = ['SharingAPI', 'create_app']
