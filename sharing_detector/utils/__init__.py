# sharing_detector/utils/__init__.py

from sharing_detector.utils.helpers import (
    setup_logging, load_config, deep_merge, parse_scan_time,
    strip_port, safe_json_dumps
)

__all__ = [
    'setup_logging', 'load_config', 'deep_merge', 'parse_scan_time',
    'strip_port', 'safe_json_dumps'
]
