"""
Configuration Management

Handles loading configuration from environment variables and config files.
"""

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv

from .control import DEFAULT_SHUTDOWN_DELAY
from .transfer.protocol import STREAM_BUFFER_SIZE

DEFAULT_HOST = 'localhost'
DEFAULT_PORT = 8022

LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR')


@dataclass
class Config:
    """
    rcopy configuration, shared by server and client.

    Configuration priority (highest to lowest):
    1. Command-line options
    2. Environment variables (RCOPY_*)
    3. Config file (JSON)
    4. Default values
    """
    # Network
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    # Transport security
    tls: bool = True
    cert_file: Optional[str] = None
    key_file: Optional[str] = None
    ca_file: Optional[str] = None
    fingerprint: Optional[str] = None

    # Transfer
    chunk_size: int = STREAM_BUFFER_SIZE

    # Timeouts (seconds)
    shutdown_delay: float = DEFAULT_SHUTDOWN_DELAY
    connect_timeout: float = 10.0

    # Logging
    log_level: str = 'INFO'

    def __post_init__(self):
        self.log_level = str(self.log_level).upper()
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"Invalid log level: {self.log_level}")
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables.

        Raises:
            ValueError: a variable has an invalid value
        """
        load_dotenv(find_dotenv(usecwd=True))

        defaults = cls()
        return cls(
            host=os.getenv('RCOPY_HOST', defaults.host),
            port=int(os.getenv('RCOPY_PORT', defaults.port)),
            tls=os.getenv('RCOPY_TLS', 'true').lower() == 'true',
            cert_file=os.getenv('RCOPY_CERT_FILE', defaults.cert_file),
            key_file=os.getenv('RCOPY_KEY_FILE', defaults.key_file),
            ca_file=os.getenv('RCOPY_CA_FILE', defaults.ca_file),
            fingerprint=os.getenv('RCOPY_FINGERPRINT', defaults.fingerprint),
            chunk_size=int(os.getenv('RCOPY_CHUNK_SIZE', defaults.chunk_size)),
            shutdown_delay=float(os.getenv('RCOPY_SHUTDOWN_DELAY', defaults.shutdown_delay)),
            connect_timeout=float(os.getenv('RCOPY_CONNECT_TIMEOUT', defaults.connect_timeout)),
            log_level=os.getenv('RCOPY_LOG_LEVEL', defaults.log_level),
        )

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a JSON object")

        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.

    Environment variables override file settings.
    """
    config = Config()

    if config_path and config_path.exists():
        config = Config.from_file(config_path)

    env_config = Config.from_env()
    defaults = Config()

    # Env takes precedence for non-default values
    for key in Config().to_dict():
        env_val = getattr(env_config, key)
        if env_val != getattr(defaults, key):
            setattr(config, key, env_val)

    return config
