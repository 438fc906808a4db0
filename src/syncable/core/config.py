"""Configuration management for the sync engine."""

import os
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from ..models.config import ConflictStrategy, ModelSyncConfig

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    """Set up logging configuration.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def load_environment(env_file: Optional[str] = None) -> None:
    """Load environment variables from .env file.

    Args:
        env_file: Path to .env file. If None, looks for .env in current directory.
    """
    env_path = Path(env_file) if env_file else Path('.env')

    if env_path.exists():
        load_dotenv(env_path)
        logger.info(f"Loaded environment from {env_path}")
    else:
        logger.warning(f"No .env file found at {env_path}")


def get_required_env(key: str) -> str:
    """Get a required environment variable.

    Raises:
        ValueError: If the environment variable is not set
    """
    value = os.getenv(key)
    if not value:
        raise ValueError(f"Required environment variable {key} is not set")
    return value


def get_optional_env(key: str, default: str = "") -> str:
    """Get an optional environment variable, or the default."""
    return os.getenv(key, default)


def get_bool_env(key: str, default: bool = False) -> bool:
    """Interpret an environment variable as a boolean flag."""
    value = os.getenv(key)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class ApiSettings(BaseModel):
    """Connection to the target system."""
    base_url: str = Field("http://localhost", description="Base URL of the target system")
    key: str = Field("", description="Pre-shared API key")
    timeout: float = Field(30, description="Request timeout in seconds")
    retry_attempts: int = Field(3, ge=1, description="Attempts per request and per job")
    retry_delay: float = Field(5, ge=0, description="Fixed delay between attempts in seconds")
    target_system_id: str = Field("target_system", description="System id of the target system")
    encrypt_key: bool = Field(True, description="Encrypt the API key header")


class EncryptionSettings(BaseModel):
    enabled: bool = False
    key: str = ""
    serialize_data: bool = True


class QueueSettings(BaseModel):
    enabled: bool = True
    max_workers: int = Field(4, ge=1)


class TenancySettings(BaseModel):
    enabled: bool = False
    identifier_column: str = "tenant_id"


class BidirectionalSettings(BaseModel):
    enabled: bool = False
    detection_window_minutes: float = Field(5, ge=0)


class ConflictResolutionSettings(BaseModel):
    strategy: str = ConflictStrategy.LAST_WRITE_WINS.value
    store_conflicts: bool = True
    models: Dict[str, str] = Field(default_factory=dict, description="Type name -> strategy")


class ThrottlingSettings(BaseModel):
    enabled: bool = False
    delay_seconds: float = Field(0, ge=0)


class DifferentialSyncSettings(BaseModel):
    enabled: bool = True


class SelectiveSyncSettings(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    enabled: bool = False
    conditions: Dict[str, Any] = Field(default_factory=dict)


class LoggingSettings(BaseModel):
    enabled: bool = True
    database_enabled: bool = True
    level: str = "INFO"


class SyncSettings(BaseModel):
    """
    Every option the engine recognises, with its default.

    Built once and handed to each component at construction time.
    """
    system_id: str = Field("syncable", description="Identifier of this system")
    target_tenant_id: Optional[Any] = Field(None, description="Global fallback tenant in the target system")

    api: ApiSettings = Field(default_factory=ApiSettings)
    encryption: EncryptionSettings = Field(default_factory=EncryptionSettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    tenancy: TenancySettings = Field(default_factory=TenancySettings)
    bidirectional: BidirectionalSettings = Field(default_factory=BidirectionalSettings)
    conflict_resolution: ConflictResolutionSettings = Field(default_factory=ConflictResolutionSettings)
    throttling: ThrottlingSettings = Field(default_factory=ThrottlingSettings)
    differential_sync: DifferentialSyncSettings = Field(default_factory=DifferentialSyncSettings)
    selective_sync: SelectiveSyncSettings = Field(default_factory=SelectiveSyncSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    models: Dict[str, ModelSyncConfig] = Field(default_factory=dict, description="Centralized per-model configuration")

    @classmethod
    def from_env(cls, secret_service=None) -> "SyncSettings":
        """
        Build settings from SYNCABLE_* environment variables.

        Args:
            secret_service: Optional SecretManagerService used for the API key
                and encryption key, with the environment as fallback.
        """
        api_key = get_optional_env("SYNCABLE_API_KEY")
        encryption_key = get_optional_env("SYNCABLE_ENCRYPTION_KEY")
        if secret_service is not None:
            keys = secret_service.get_sync_keys(api_key, encryption_key)
            api_key, encryption_key = keys["api_key"], keys["encryption_key"]

        return cls(
            system_id=get_optional_env("SYNCABLE_SYSTEM_ID", "syncable"),
            target_tenant_id=os.getenv("SYNCABLE_TARGET_TENANT_ID") or None,
            api=ApiSettings(
                base_url=get_optional_env("SYNCABLE_TARGET_URL", "http://localhost"),
                key=api_key,
                timeout=float(get_optional_env("SYNCABLE_API_TIMEOUT", "30")),
                retry_attempts=int(get_optional_env("SYNCABLE_RETRY_ATTEMPTS", "3")),
                retry_delay=float(get_optional_env("SYNCABLE_RETRY_DELAY", "5")),
                target_system_id=get_optional_env("SYNCABLE_TARGET_SYSTEM_ID", "target_system"),
                encrypt_key=get_bool_env("SYNCABLE_ENCRYPT_API_KEY", True),
            ),
            encryption=EncryptionSettings(
                enabled=get_bool_env("SYNCABLE_ENCRYPTION_ENABLED", False),
                key=encryption_key,
                serialize_data=get_bool_env("SYNCABLE_SERIALIZE_DATA", True),
            ),
            queue=QueueSettings(
                enabled=get_bool_env("SYNCABLE_QUEUE_ENABLED", True),
                max_workers=int(get_optional_env("SYNCABLE_QUEUE_WORKERS", "4")),
            ),
            tenancy=TenancySettings(
                enabled=get_bool_env("SYNCABLE_TENANCY_ENABLED", False),
                identifier_column=get_optional_env("SYNCABLE_TENANCY_IDENTIFIER_COLUMN", "tenant_id"),
            ),
            bidirectional=BidirectionalSettings(
                enabled=get_bool_env("SYNCABLE_BIDIRECTIONAL_ENABLED", False),
                detection_window_minutes=float(get_optional_env("SYNCABLE_DETECTION_WINDOW", "5")),
            ),
            conflict_resolution=ConflictResolutionSettings(
                strategy=get_optional_env("SYNCABLE_CONFLICT_STRATEGY", ConflictStrategy.LAST_WRITE_WINS.value),
                store_conflicts=get_bool_env("SYNCABLE_STORE_CONFLICTS", True),
            ),
            throttling=ThrottlingSettings(
                enabled=get_bool_env("SYNCABLE_THROTTLING_ENABLED", False),
                delay_seconds=float(get_optional_env("SYNCABLE_THROTTLING_DELAY", "0")),
            ),
            differential_sync=DifferentialSyncSettings(
                enabled=get_bool_env("SYNCABLE_DIFFERENTIAL_SYNC_ENABLED", True),
            ),
            selective_sync=SelectiveSyncSettings(
                enabled=get_bool_env("SYNCABLE_SELECTIVE_SYNC_ENABLED", False),
            ),
            logging=LoggingSettings(
                enabled=get_bool_env("SYNCABLE_LOGGING_ENABLED", True),
                database_enabled=get_bool_env("SYNCABLE_LOGGING_DB_ENABLED", True),
                level=get_optional_env("SYNCABLE_LOG_LEVEL", "INFO"),
            ),
        )
