"""
Configuration for LiveState applications.

🔧 Dataclass configuration:
One ``LiveStateConfig`` object groups storage, realtime, security, logging and
client settings. It can be built per environment, from a dict, from a JSON
file or from ``LIVESTATE_*`` environment variables, and is passed explicitly
to the registry and the web adapter.
"""

import json
import logging
import logging.handlers
import os
import re
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union


class Environment(Enum):
    """Application environments"""
    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"


@dataclass
class StorageConfig:
    """State storage configuration"""
    session_ttl: int = 3600  # 1 hour, shared cache and TTL store expiry
    process_cache_size: int = 1024
    redis_url: Optional[str] = None
    database_url: Optional[str] = None
    database_echo: bool = False
    cleanup_interval: int = 300


@dataclass
class RealtimeConfig:
    """Push channel configuration"""
    heartbeat_interval: float = 30.0
    reconnect_floor: float = 1.0
    reconnect_ceiling: float = 30.0
    heartbeat_timeout: Optional[float] = 75.0
    event_retention: int = 3600
    max_log_size: int = 1000
    queue_size: int = 1000
    default_channels: list = field(default_factory=lambda: ["state"])


@dataclass
class SecurityConfig:
    """Session and nonce configuration"""
    secret_key: Optional[str] = None
    session_lifetime: int = 24 * 3600
    nonce_lifetime: int = 12 * 3600
    cookie_name: str = "livestate_session"
    session_header: str = "X-LiveState-Session"
    nonce_header: str = "X-LiveState-Nonce"
    verify_nonce: bool = True


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_path: Optional[str] = None
    max_file_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5


@dataclass
class ClientConfig:
    """Settings the client runtime needs to reach the server"""
    state_url: str = "/livestate/state"
    events_url: str = "/livestate/events"
    nonce: str = ""
    session: str = ""
    debug: bool = False

    def to_wire(self) -> Dict[str, Any]:
        return {
            "stateUrl": self.state_url,
            "eventsUrl": self.events_url,
            "nonce": self.nonce,
            "session": self.session,
            "debug": self.debug,
        }

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> 'ClientConfig':
        defaults = cls()
        return cls(
            state_url=data.get("stateUrl", defaults.state_url),
            events_url=data.get("eventsUrl", defaults.events_url),
            nonce=data.get("nonce", ""),
            session=data.get("session", ""),
            debug=bool(data.get("debug", False)),
        )

    @classmethod
    def from_html(cls, html: str, element_id: str = "livestate-config") -> 'ClientConfig':
        """Read the config script a page embedded with ``client_config``."""
        body = script_body(html, element_id)
        if body is None:
            return cls()
        return cls.from_wire(json.loads(body))


def script_body(html: str, element_id: str) -> Optional[str]:
    """Text of the ``<script>`` element with the given id, if the page has one."""
    match = re.search(
        rf'<script[^>]*\bid="{re.escape(element_id)}"[^>]*>(.*?)</script>',
        html,
        re.DOTALL,
    )
    return match.group(1) if match else None


@dataclass
class LiveStateConfig:
    """Complete LiveState configuration"""
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False

    storage: StorageConfig = field(default_factory=StorageConfig)
    realtime: RealtimeConfig = field(default_factory=RealtimeConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    client: ClientConfig = field(default_factory=ClientConfig)

    @classmethod
    def for_environment(cls, environment: Environment) -> 'LiveStateConfig':
        """Create configuration for specific environment"""
        config = cls(environment=environment)

        if environment == Environment.DEVELOPMENT:
            config.debug = True
            config.client.debug = True
            config.logging.level = "DEBUG"

        elif environment == Environment.TESTING:
            config.storage.database_url = "sqlite://"
            config.security.secret_key = "livestate-testing-secret"
            config.logging.level = "WARNING"

        elif environment == Environment.PRODUCTION:
            config.debug = False
            config.logging.level = "INFO"

        return config

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'LiveStateConfig':
        """Create configuration from dictionary; unknown keys are ignored"""
        environment = Environment(config_dict.get("environment", Environment.DEVELOPMENT.value))
        config = cls.for_environment(environment)

        if "debug" in config_dict:
            config.debug = bool(config_dict["debug"])

        for section in ("storage", "realtime", "security", "logging", "client"):
            values = config_dict.get(section) or {}
            target = getattr(config, section)
            known = {f.name for f in fields(target)}
            for key, value in values.items():
                if key in known:
                    setattr(target, key, value)

        return config

    @classmethod
    def from_file(cls, config_path: Union[str, Path]) -> 'LiveStateConfig':
        """Load configuration from a JSON file"""
        config_path = Path(config_path)

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        if config_path.suffix != '.json':
            raise ValueError(f"Unsupported configuration file format: {config_path.suffix}")

        with open(config_path) as f:
            config_dict = json.load(f)

        return cls.from_dict(config_dict)

    @classmethod
    def from_environment(cls) -> 'LiveStateConfig':
        """Create configuration from environment variables"""
        env_name = os.getenv('LIVESTATE_ENV', 'development')
        config = cls.for_environment(Environment(env_name))

        if os.getenv('LIVESTATE_DEBUG'):
            config.debug = os.getenv('LIVESTATE_DEBUG').lower() == 'true'

        if os.getenv('LIVESTATE_REDIS_URL'):
            config.storage.redis_url = os.getenv('LIVESTATE_REDIS_URL')

        if os.getenv('LIVESTATE_DATABASE_URL'):
            config.storage.database_url = os.getenv('LIVESTATE_DATABASE_URL')

        if os.getenv('LIVESTATE_SESSION_TTL'):
            config.storage.session_ttl = int(os.getenv('LIVESTATE_SESSION_TTL'))

        if os.getenv('LIVESTATE_SECRET_KEY'):
            config.security.secret_key = os.getenv('LIVESTATE_SECRET_KEY')

        if os.getenv('LIVESTATE_LOG_LEVEL'):
            config.logging.level = os.getenv('LIVESTATE_LOG_LEVEL').upper()

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary"""
        data = asdict(self)
        data["environment"] = self.environment.value
        return data


def configure_logging(config: LoggingConfig) -> logging.Logger:
    """Install handlers on the ``livestate`` logger according to ``config``."""
    logger = logging.getLogger("livestate")
    logger.setLevel(config.level.upper())

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(config.format)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if config.file_path:
        file_handler = logging.handlers.RotatingFileHandler(
            config.file_path,
            maxBytes=config.max_file_size,
            backupCount=config.backup_count,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


__all__ = [
    "Environment", "StorageConfig", "RealtimeConfig", "SecurityConfig",
    "LoggingConfig", "ClientConfig", "LiveStateConfig", "configure_logging",
    "script_body",
]
