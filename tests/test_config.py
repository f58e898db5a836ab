"""Tests for configuration management."""

import pytest
import tempfile
from pathlib import Path

from aws_service_broker.config import BrokerOptions, Config
from aws_service_broker.exceptions import ConfigurationError


class TestConfig:
    """Test configuration loading."""

    def test_defaults(self):
        config = Config()

        assert config.broker == BrokerOptions()
        assert config.broker.table_name == "awssb"
        assert config.broker.prescribe_overrides is True
        assert config.database.type == "dynamodb"
        assert config.api.port == 3199

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv('TABLE_NAME', 'brokertable')
        monkeypatch.setenv('S3_BUCKET', 'mybucket')
        monkeypatch.setenv('REGION', 'eu-west-1')
        monkeypatch.setenv('PRESCRIBE_OVERRIDES', 'false')
        monkeypatch.setenv('GLOBAL_OVERRIDES', '{"VpcId": "vpc-123", "Port": 5432}')
        monkeypatch.setenv('DB_TYPE', 'sqlite')
        monkeypatch.setenv('API_PORT', '8080')

        config = Config.from_env()

        assert config.broker.table_name == 'brokertable'
        assert config.broker.s3_bucket == 'mybucket'
        assert config.broker.region == 'eu-west-1'
        assert config.broker.prescribe_overrides is False
        assert config.broker.global_overrides == {'VpcId': 'vpc-123', 'Port': '5432'}
        assert config.database.type == 'sqlite'
        assert config.api.port == 8080

    def test_invalid_global_overrides(self, monkeypatch):
        monkeypatch.setenv('GLOBAL_OVERRIDES', '[1, 2]')

        with pytest.raises(ConfigurationError):
            Config.from_env()

    def test_from_file_with_env_precedence(self, monkeypatch):
        monkeypatch.setenv('S3_KEY', 'templates/v2')
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            f.write(
                "broker:\n"
                "  broker_id: filebroker\n"
                "  s3_key: templates/v1\n"
                "  global_overrides:\n"
                "    Port: 5432\n"
                "database:\n"
                "  type: sqlite\n"
                "  sqlite_path: /tmp/broker.db\n"
            )
            config_path = Path(f.name)

        try:
            config = Config.from_file(config_path)
        finally:
            config_path.unlink()

        assert config.broker.broker_id == 'filebroker'
        assert config.broker.s3_key == 'templates/v2'
        assert config.broker.global_overrides == {'Port': '5432'}
        assert config.database.sqlite_path == '/tmp/broker.db'

    def test_missing_file(self):
        with pytest.raises(ConfigurationError):
            Config.from_file(Path('/nonexistent/config.yaml'))

    def test_unknown_key_in_file(self):
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            f.write("api:\n  workers: 4\n")
            config_path = Path(f.name)

        try:
            with pytest.raises(ConfigurationError):
                Config.from_file(config_path)
        finally:
            config_path.unlink()

    def test_validate(self):
        config = Config()
        config.validate()

        config.broker = BrokerOptions(s3_bucket="")
        with pytest.raises(ConfigurationError) as exc_info:
            config.validate()

        assert exc_info.value.details['config_key'] == 's3_bucket'
