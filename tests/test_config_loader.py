"""
Tests for configuration loading and validation
"""

import logging

import pytest
import yaml

from cloudbite_link.config_loader import (
    DEFAULTS,
    LocalTimeFormatter,
    get_sample_config,
    load_config,
)


class TestLoadConfig:
    """Tests for load_config"""

    def test_defaults_only(self):
        """Test load_config(None) returns every section with defaults"""
        config = load_config(None)

        assert set(DEFAULTS) <= set(config)
        assert config['discovery']['product_id'] == 'cloudbite-api'
        assert config['discovery']['port'] == 3737
        assert config['discovery']['chunk_size'] == 30
        assert config['health']['failure_threshold'] == 2
        assert config['reconnect']['max_cycles'] == 1
        assert config['connection']['default_mode'] == 'auto'

    def test_defaults_are_not_shared(self):
        """Test mutating one loaded config does not leak into the next"""
        first = load_config(None)
        first['discovery']['priority_ranges'].append([240, 250])

        second = load_config(None)
        assert [240, 250] not in second['discovery']['priority_ranges']

    def test_missing_file_raises(self, tmp_path):
        """Test an explicit path that does not exist raises FileNotFoundError"""
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / 'missing.yaml'))

    def test_yaml_overrides_merge_with_defaults(self, tmp_path):
        """Test values from YAML override defaults key by key"""
        path = tmp_path / 'config.yaml'
        path.write_text(yaml.safe_dump({
            'discovery': {'port': 4000, 'subnet': '10.0.0'},
            'health': {'interval_seconds': 5},
        }))

        config = load_config(str(path))

        assert config['discovery']['port'] == 4000
        assert config['discovery']['subnet'] == '10.0.0'
        assert config['discovery']['chunk_size'] == 30
        assert config['health']['interval_seconds'] == 5
        assert config['health']['timeout_seconds'] == 3.0

    def test_empty_file_gives_defaults(self, tmp_path):
        """Test an empty YAML file is treated as no overrides"""
        path = tmp_path / 'config.yaml'
        path.write_text("")

        config = load_config(str(path))
        assert config['status_api']['port'] == 8737

    @pytest.mark.parametrize("section,key,value", [
        ('discovery', 'chunk_size', 0),
        ('discovery', 'probe_timeout', 0),
        ('discovery', 'priority_ranges', [[0, 10]]),
        ('discovery', 'priority_ranges', [[200, 300]]),
        ('health', 'failure_threshold', 0),
        ('health', 'interval_seconds', -1),
        ('connection', 'default_mode', 'bluetooth'),
        ('diagnostics', 'timeout_seconds', 0),
        ('logging', 'timezone', 'Mars/Olympus_Mons'),
    ])
    def test_invalid_values_raise(self, tmp_path, section, key, value):
        """Test invalid configuration values raise ValueError"""
        path = tmp_path / 'config.yaml'
        path.write_text(yaml.safe_dump({section: {key: value}}))

        with pytest.raises(ValueError):
            load_config(str(path))

    def test_sample_config_is_valid(self, tmp_path):
        """Test the documented sample config loads cleanly"""
        path = tmp_path / 'config.yaml'
        path.write_text(yaml.safe_dump(get_sample_config()))

        config = load_config(str(path))
        assert config['logging']['file'] == 'logs/cloudbite_link.log'


class TestLocalTimeFormatter:
    """Tests for the timezone-aware log formatter"""

    def test_format_time_uses_timezone(self):
        """Test timestamps are rendered in the configured zone"""
        formatter = LocalTimeFormatter("%(asctime)s %(message)s", 'UTC')
        record = logging.LogRecord('test', logging.INFO, __file__, 1, "hello", None, None)
        record.created = 0

        assert formatter.formatTime(record) == '1970-01-01 00:00:00 UTC'
        assert formatter.formatTime(record, '%H:%M') == '00:00'
