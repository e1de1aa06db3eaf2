"""
Configuration loader for the CloudBite connection client
Loads and validates configuration from YAML files
"""

import copy
import yaml
import logging
from typing import Dict, Any, Optional
from pathlib import Path
from datetime import datetime
import pytz

logger = logging.getLogger(__name__)

CONNECTION_MODES = ('auto', 'manual', 'remote')

DEFAULTS: Dict[str, Dict[str, Any]] = {
    'discovery': {
        'product_id': 'cloudbite-api',
        'port': 3737,
        'discovery_path': '/api/v1/discovery',
        'gateway_candidates': [
            '192.168.1.1', '192.168.0.1', '10.0.0.1', '10.0.1.1',
            '192.168.100.1', '192.168.2.1', '172.16.0.1'
        ],
        'default_subnet': '192.168.1',
        'subnet': None,  # pin a /24 prefix and skip gateway detection
        'priority_ranges': [[1, 50], [100, 110], [200, 210]],
        'chunk_size': 30,
        'gateway_timeout': 0.5,
        'probe_timeout': 1.0,
        'quick_check_timeout': 2.0,
        'manual_test_timeout': 5.0,
        'min_discovery_interval_seconds': 30
    },
    'health': {
        'health_path': '/api/v1/health',
        'interval_seconds': 15,
        'timeout_seconds': 3.0,
        'failure_threshold': 2
    },
    'reconnect': {
        'max_cycles': 1,
        'initial_delay_seconds': 2.0,
        'backoff_multiplier': 2.0,
        'max_delay_seconds': 30.0,
        'max_logs': 50
    },
    'connection': {
        'default_mode': 'auto',
        'debounce_seconds': 1.0,
        'settle_delay_seconds': 1.0,
        'server_config_after_attempts': 1
    },
    'network': {
        'poll_interval_seconds': 2.0
    },
    'diagnostics': {
        'timeout_seconds': 5.0,
        'slow_response_ms': 3000
    },
    'storage': {
        'service_name': 'com.cloudbite.link'
    },
    'api_client': {
        'timeout_seconds': 30,
        'ssl_verify': True,
        'ca_cert_path': None
    },
    'status_api': {
        'enabled': True,
        'host': '127.0.0.1',
        'port': 8737
    },
    'logging': {
        'level': 'INFO',
        'file': None,
        'console_output': True,
        'timezone': 'UTC'
    }
}


def load_config(config_path: Optional[str] = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file with validation.
    Passing None returns the defaults without touching the filesystem.
    """
    if config_path is None:
        config = _apply_defaults({})
        _validate_config(config)
        return config

    try:
        config_file = Path(config_path)
        if not config_file.exists():
            logger.error(f"Configuration file not found: {config_path}")
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_file, 'r') as f:
            config = yaml.safe_load(f) or {}

        if not isinstance(config, dict):
            raise ValueError("Configuration root must be a mapping")

        config = _apply_defaults(config)
        _validate_config(config)

        logger.info(f"Configuration loaded from {config_path}")
        return config

    except Exception as e:
        logger.error(f"Failed to load configuration: {e}")
        raise


def _apply_defaults(config: Dict) -> Dict:
    """Apply default values to configuration"""
    for section, section_defaults in DEFAULTS.items():
        if config.get(section) is None:
            config[section] = {}
        for key, default_value in section_defaults.items():
            if key not in config[section]:
                config[section][key] = copy.deepcopy(default_value)
    return config


def _validate_config(config: Dict) -> None:
    """Validate configuration values after defaults have been applied"""
    discovery = config['discovery']
    for key in ('gateway_timeout', 'probe_timeout', 'quick_check_timeout',
                'manual_test_timeout'):
        if discovery[key] <= 0:
            raise ValueError(f"discovery.{key} must be positive")
    if discovery['min_discovery_interval_seconds'] < 0:
        raise ValueError("discovery.min_discovery_interval_seconds must not be negative")
    if int(discovery['chunk_size']) < 1:
        raise ValueError("discovery.chunk_size must be at least 1")
    if not discovery['product_id']:
        raise ValueError("discovery.product_id is required")

    for ip_range in discovery['priority_ranges']:
        if len(ip_range) != 2:
            raise ValueError(f"Invalid priority range: {ip_range}")
        start, end = ip_range
        if not (1 <= start <= end <= 254):
            raise ValueError(f"Priority range out of bounds (1-254): {ip_range}")

    health = config['health']
    if health['interval_seconds'] <= 0 or health['timeout_seconds'] <= 0:
        raise ValueError("health.interval_seconds and health.timeout_seconds must be positive")
    if int(health['failure_threshold']) < 1:
        raise ValueError("health.failure_threshold must be at least 1")

    reconnect = config['reconnect']
    if int(reconnect['max_cycles']) < 1:
        raise ValueError("reconnect.max_cycles must be at least 1")
    if reconnect['backoff_multiplier'] < 1:
        raise ValueError("reconnect.backoff_multiplier must be >= 1")

    connection = config['connection']
    if connection['default_mode'] not in CONNECTION_MODES:
        raise ValueError(f"connection.default_mode must be one of {CONNECTION_MODES}")

    if config['network']['poll_interval_seconds'] <= 0:
        raise ValueError("network.poll_interval_seconds must be positive")

    if config['diagnostics']['timeout_seconds'] <= 0:
        raise ValueError("diagnostics.timeout_seconds must be positive")

    try:
        pytz.timezone(config['logging']['timezone'])
    except pytz.UnknownTimeZoneError:
        raise ValueError(f"Unknown logging.timezone: {config['logging']['timezone']}")


class LocalTimeFormatter(logging.Formatter):
    """Formatter that renders timestamps in a configured timezone"""

    def __init__(self, fmt=None, tz_name: str = 'UTC'):
        super().__init__(fmt)
        self.tz = pytz.timezone(tz_name)

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, tz=self.tz)
        if datefmt:
            return dt.strftime(datefmt)
        else:
            return dt.strftime('%Y-%m-%d %H:%M:%S %Z')


def setup_logging(config: Dict) -> None:
    """Setup logging based on configuration"""
    log_config = config.get('logging', {})
    level = log_config.get('level', 'INFO')
    tz_name = log_config.get('timezone', 'UTC')

    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = LocalTimeFormatter(log_format, tz_name)

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=log_format,
        handlers=[]
    )

    if log_config.get('console_output', True):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logging.getLogger().addHandler(console_handler)

    log_file = log_config.get('file')
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logging.getLogger().addHandler(file_handler)

    logger.info(f"Logging configured: level={level}, tz={tz_name}, "
                f"console={log_config.get('console_output', True)}, file={log_file}")


def get_sample_config() -> Dict:
    """Return a sample configuration for reference"""
    return {
        "discovery": {
            "product_id": "cloudbite-api",
            "port": 3737,
            "subnet": None,
            "priority_ranges": [[1, 50], [100, 110], [200, 210]],
            "chunk_size": 30,
            "gateway_timeout": 0.5,
            "probe_timeout": 1.0,
            "quick_check_timeout": 2.0,
            "manual_test_timeout": 5.0,
            "min_discovery_interval_seconds": 30
        },
        "health": {
            "health_path": "/api/v1/health",
            "interval_seconds": 15,
            "timeout_seconds": 3.0,
            "failure_threshold": 2
        },
        "reconnect": {
            "max_cycles": 1,
            "initial_delay_seconds": 2.0,
            "backoff_multiplier": 2.0,
            "max_delay_seconds": 30.0,
            "max_logs": 50
        },
        "connection": {
            "default_mode": "auto",
            "debounce_seconds": 1.0,
            "settle_delay_seconds": 1.0,
            "server_config_after_attempts": 1
        },
        "network": {
            "poll_interval_seconds": 2.0
        },
        "diagnostics": {
            "timeout_seconds": 5.0,
            "slow_response_ms": 3000
        },
        "storage": {
            "service_name": "com.cloudbite.link"
        },
        "api_client": {
            "timeout_seconds": 30,
            "ssl_verify": True,
            "ca_cert_path": None
        },
        "status_api": {
            "enabled": True,
            "host": "127.0.0.1",
            "port": 8737
        },
        "logging": {
            "level": "INFO",
            "file": "logs/cloudbite_link.log",
            "console_output": True,
            "timezone": "America/Mexico_City"
        }
    }
