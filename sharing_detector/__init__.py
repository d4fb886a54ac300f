# sharing_detector/__init__.py
"""Detects subscribers sharing their connection from the TTL of their traffic."""

__version__ = '0.1.0'
