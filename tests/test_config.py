"""Tests for config.py - configuration loading."""

import json

import pytest

from rcopy.config import Config, load_config
from rcopy.transfer.protocol import STREAM_BUFFER_SIZE


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate from RCOPY_* variables and any .env in the working directory."""
    for key in ('HOST', 'PORT', 'TLS', 'CERT_FILE', 'KEY_FILE', 'CA_FILE',
                'FINGERPRINT', 'CHUNK_SIZE', 'SHUTDOWN_DELAY',
                'CONNECT_TIMEOUT', 'LOG_LEVEL'):
        # setenv first so values loaded from a .env file are removed afterwards
        monkeypatch.setenv(f'RCOPY_{key}', '')
        monkeypatch.delenv(f'RCOPY_{key}')
    monkeypatch.chdir(tmp_path)


class TestConfig:
    """Tests for the Config dataclass."""

    def test_defaults(self):
        config = Config()
        assert config.host == 'localhost'
        assert config.port == 8022
        assert config.tls is True
        assert config.chunk_size == STREAM_BUFFER_SIZE
        assert config.shutdown_delay == 1.0
        assert config.log_level == 'INFO'

    def test_log_level_normalized(self):
        assert Config(log_level='debug').log_level == 'DEBUG'

    def test_invalid_log_level(self):
        with pytest.raises(ValueError):
            Config(log_level='chatty')

    def test_invalid_chunk_size(self):
        with pytest.raises(ValueError):
            Config(chunk_size=0)


class TestFromEnv:
    """Tests for Config.from_env."""

    def test_reads_variables(self, monkeypatch):
        monkeypatch.setenv('RCOPY_HOST', 'example.org')
        monkeypatch.setenv('RCOPY_PORT', '9000')
        monkeypatch.setenv('RCOPY_TLS', 'false')
        monkeypatch.setenv('RCOPY_LOG_LEVEL', 'debug')

        config = Config.from_env()

        assert config.host == 'example.org'
        assert config.port == 9000
        assert config.tls is False
        assert config.log_level == 'DEBUG'

    def test_dotenv_file(self, tmp_path):
        (tmp_path / '.env').write_text('RCOPY_PORT=9100\n')

        assert Config.from_env().port == 9100


class TestFromFile:
    """Tests for Config.from_file and load_config."""

    def test_missing_file_gives_defaults(self, tmp_path):
        assert Config.from_file(tmp_path / 'nope.json') == Config()

    def test_round_trip(self, tmp_path):
        path = tmp_path / 'config.json'
        config = Config(host='0.0.0.0', port=9001, tls=False, chunk_size=4096)
        config.save(path)

        assert Config.from_file(path) == config

    def test_ignores_unknown_keys(self, tmp_path):
        path = tmp_path / 'config.json'
        path.write_text(json.dumps({'port': 9002, 'colour': 'blue'}))

        assert Config.from_file(path).port == 9002

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / 'config.json'
        path.write_text(json.dumps({'host': 'file-host', 'port': 9003}))
        monkeypatch.setenv('RCOPY_PORT', '9004')

        config = load_config(path)

        assert config.host == 'file-host'
        assert config.port == 9004

    def test_invalid_env_log_level(self, monkeypatch):
        monkeypatch.setenv('RCOPY_LOG_LEVEL', 'bogus')

        with pytest.raises(ValueError, match="Invalid log level"):
            Config.from_env()

    def test_invalid_env_chunk_size(self, monkeypatch):
        monkeypatch.setenv('RCOPY_CHUNK_SIZE', '-1')

        with pytest.raises(ValueError, match="chunk_size"):
            Config.from_env()

    def test_file_not_an_object(self, tmp_path):
        path = tmp_path / 'config.json'
        path.write_text('[1, 2]')

        with pytest.raises(ValueError, match="JSON object"):
            Config.from_file(path)
