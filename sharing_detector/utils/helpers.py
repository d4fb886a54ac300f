import os
import sys
import copy
import logging
import json
import re
from datetime import datetime, date

import yaml


SCAN_TIME_PATTERN = re.compile(r'^([01]\d|2[0-3]):([0-5]\d)$')

DEFAULT_CONFIG = {
    'database': {
        'url': 'sqlite:///sharing_detector.db'
    },
    'api': {
        'host': '0.0.0.0',
        'port': 8060,
        'debug': False
    },
    'router': {
        'api_port': 8728,
        'timeout': 5,
        'rule_comment_prefix': 'ISP'
    },
    'scanner': {
        'check_interval': 30,
        'nas_timeout': 10,
        'max_workers': 8
    },
    'logging': {
        'level': 'INFO',
        'file': None
    },
    'scoring': {},
    'subscribers': {
        'file': None,
        'entries': {}
    },
    'nas': []
}


def setup_logging(level=logging.INFO, log_file=None):
    """Set up logging configuration"""
    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format=log_format,
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(log_format))
        logging.getLogger().addHandler(file_handler)

    logging.getLogger('werkzeug').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

    return logging.getLogger('sharing_detector')


def load_config(config_path='config.yaml'):
    """Load configuration from YAML file"""
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path and os.path.exists(config_path):
        try:
            with open(config_path, 'r') as file:
                user_config = yaml.safe_load(file)
                if user_config:
                    deep_merge(config, user_config)
        except (OSError, yaml.YAMLError) as e:
            logging.warning(f"Failed to load config from {config_path}: {e}")
            logging.warning("Using default configuration")
    else:
        logging.info(f"Config file not found at {config_path}, using defaults")

    return config


def deep_merge(base, override):
    """Recursively merge two dictionaries"""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            deep_merge(base[key], value)
        else:
            base[key] = value


def parse_scan_time(value):
    """Parse an HH:MM string into (hour, minute), or None if it is not valid"""
    if not isinstance(value, str):
        return None
    match = SCAN_TIME_PATTERN.match(value.strip())
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def strip_port(address):
    """'10.0.0.5:51234' -> '10.0.0.5'"""
    if not address:
        return address
    if address.count(':') == 1:
        return address.split(':', 1)[0]
    return address


def json_serialize(obj):
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    raise TypeError(f"Type {type(obj)} not serializable")


def safe_json_dumps(data):
    return json.dumps(data, default=json_serialize)
