"""
Configuration and Types for the Cloud Sync Validator

Records read from the TrueNAS management API, validation results and the
validator's own configuration.
"""

import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import ConfigError


class ValidationMode(Enum):
    """Verification modes, ordered from cheapest to most thorough"""
    LIST = "list"
    SAMPLE = "sample"
    QUICK = "quick"
    FULL = "full"


class ValidationStatus(Enum):
    """Outcome of validating one task"""
    PASSED = "passed"
    FAILED = "failed"
    ERROR = "error"


class MismatchKind(Enum):
    """Why a single file did not verify"""
    MISSING = "missing"
    MISMATCH = "mismatch"
    SIZE = "size"
    ERROR = "error"


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class SyncTask:
    """A TrueNAS Cloud Sync task as returned by GET /cloudsync"""
    id: int
    description: str
    path: str
    credential_id: Optional[int]
    encryption: bool = False
    encryption_password: str = ""
    encryption_salt: str = ""
    filename_encryption: bool = False
    remote_folder: str = ""
    enabled: bool = True

    @classmethod
    def from_api(cls, record: Dict[str, Any]) -> "SyncTask":
        credentials = record.get("credentials")
        if isinstance(credentials, dict):
            credential_id = credentials.get("id")
        else:
            credential_id = credentials

        attributes = record.get("attributes") or {}

        return cls(
            id=int(record["id"]),
            description=record.get("description") or "",
            path=record.get("path") or "",
            credential_id=int(credential_id) if credential_id is not None else None,
            encryption=_as_bool(record.get("encryption")),
            encryption_password=record.get("encryption_password") or "",
            encryption_salt=record.get("encryption_salt") or "",
            filename_encryption=_as_bool(record.get("filename_encryption")),
            remote_folder=attributes.get("folder") or "",
            enabled=_as_bool(record.get("enabled", True)),
        )


@dataclass
class Credential:
    """A cloud credential as returned by GET /cloudsync/credentials"""
    id: int
    provider: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    name: str = ""

    @classmethod
    def from_api(cls, record: Dict[str, Any]) -> "Credential":
        provider = record.get("provider")
        # Newer TrueNAS releases nest the provider tag inside the attributes
        if provider is None:
            provider = (record.get("attributes") or {}).get("type", "")
        return cls(
            id=int(record["id"]),
            provider=str(provider or ""),
            attributes=dict(record.get("attributes") or {}),
            name=record.get("name") or "",
        )


@dataclass
class Mismatch:
    """A single file that failed verification"""
    path: str
    kind: MismatchKind
    # For MISSING: the side that does not have the file ("local" or "remote")
    side: Optional[str] = None
    detail: str = ""

    def describe(self) -> str:
        if self.kind == MismatchKind.MISSING and self.side:
            return f"{self.path}: missing on {self.side}"
        text = f"{self.path}: {self.kind.value}"
        if self.detail:
            text += f" ({self.detail})"
        return text


@dataclass
class ValidationResult:
    """Result of validating one task in one mode"""
    task_id: int
    mode: ValidationMode
    status: ValidationStatus
    description: str = ""
    duration_s: float = 0.0
    mismatches: List[Mismatch] = field(default_factory=list)
    files_checked: int = 0
    files_decrypted: int = 0
    entries: List[str] = field(default_factory=list)
    error_kind: Optional[str] = None
    error: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.status == ValidationStatus.PASSED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "task_id": self.task_id,
            "description": self.description,
            "mode": self.mode.value,
            "status": self.status.value,
            "duration_s": round(self.duration_s, 3),
            "mismatches": [
                {"path": m.path, "kind": m.kind.value, "side": m.side, "detail": m.detail}
                for m in self.mismatches
            ],
            "files_checked": self.files_checked,
            "files_decrypted": self.files_decrypted,
            "error_kind": self.error_kind,
            "error": self.error,
        }


@dataclass
class BatchReport:
    """Aggregate of one validate-all run"""
    mode: ValidationMode
    results: List[ValidationResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    total_duration_s: float = 0.0

    @property
    def passed_count(self) -> int:
        return sum(1 for r in self.results if r.status == ValidationStatus.PASSED)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if r.status != ValidationStatus.PASSED)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def passed(self) -> bool:
        """True iff at least one task ran and none failed"""
        return self.total > 0 and self.failed_count == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "total_duration_s": round(self.total_duration_s, 3),
            "total": self.total,
            "passed": self.passed_count,
            "failed": self.failed_count,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class ValidatorConfig:
    """
    Configuration for the validator.

    Connection settings for the TrueNAS API plus the knobs handed to rclone.
    """
    # Management API
    host: str = ""
    api_key: str = ""
    user: str = ""
    password: str = ""
    verify_tls: bool = False  # TrueNAS ships a self-signed certificate
    http_timeout_s: float = 30.0

    # Engine settings
    rclone_binary: str = "rclone"
    checkers: int = 16
    transfers: int = 16
    sample_transfers: int = 8
    sample_bytes: int = 50 * 1024 * 1024
    list_limit: int = 20

    # Host resources
    lock_file: Path = Path("/tmp/validate-cloud-sync.lock")
    log_dir: Path = Path("/tmp")

    # Notifications
    mail_to: str = "root"
    mail_command: str = "/usr/bin/mail"
    alert_name: str = "CloudSyncValidation"

    @property
    def base_url(self) -> str:
        host = self.host.rstrip("/")
        if not host.startswith(("http://", "https://")):
            host = f"https://{host}"
        return f"{host}/api/v2.0"

    def validate(self) -> None:
        """Raise ConfigError unless the API can be reached and authenticated"""
        if not self.host:
            raise ConfigError("TRUENAS_HOST not set")
        if not self.api_key and not (self.user and self.password):
            raise ConfigError(
                "Either TRUENAS_API_KEY or TRUENAS_USER and TRUENAS_PASSWORD must be set"
            )
        if self.checkers < 1 or self.transfers < 1:
            raise ConfigError("checkers and transfers must be at least 1")

    @classmethod
    def from_yaml(cls, path: str) -> "ValidatorConfig":
        """Load config from YAML file, environment fills what the file leaves out"""
        import yaml

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise ConfigError(f"Cannot read config file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")

        config = cls.from_env()
        known = set(cls.__dataclass_fields__)
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")

        for key, value in data.items():
            if key in ("lock_file", "log_dir"):
                value = Path(value)
            setattr(config, key, value)
        return config

    @classmethod
    def from_env(cls) -> "ValidatorConfig":
        """Load config from environment variables"""
        try:
            return cls(
                host=os.getenv("TRUENAS_HOST", ""),
                api_key=os.getenv("TRUENAS_API_KEY", ""),
                user=os.getenv("TRUENAS_USER", ""),
                password=os.getenv("TRUENAS_PASSWORD", ""),
                verify_tls=_as_bool(os.getenv("TRUENAS_VERIFY_TLS", "false")),
                http_timeout_s=float(os.getenv("VALIDATOR_HTTP_TIMEOUT", "30")),
                rclone_binary=os.getenv("RCLONE_BINARY", "rclone"),
                checkers=int(os.getenv("VALIDATOR_CHECKERS", "16")),
                transfers=int(os.getenv("VALIDATOR_TRANSFERS", "16")),
                sample_bytes=int(os.getenv("VALIDATOR_SAMPLE_BYTES", str(50 * 1024 * 1024))),
                list_limit=int(os.getenv("VALIDATOR_LIST_LIMIT", "20")),
                lock_file=Path(os.getenv("VALIDATOR_LOCK_FILE", "/tmp/validate-cloud-sync.lock")),
                log_dir=Path(os.getenv("VALIDATOR_LOG_DIR", "/tmp")),
                mail_to=os.getenv("VALIDATOR_MAIL_TO", "root"),
                mail_command=os.getenv("VALIDATOR_MAIL_COMMAND", "/usr/bin/mail"),
            )
        except ValueError as e:
            raise ConfigError(f"Invalid numeric setting in environment: {e}") from e


def load_env_file(path: Optional[str] = None) -> bool:
    """
    Load KEY=VALUE pairs from a .env file into the environment.

    Variables already set in the environment win. Returns True if a file
    was found and loaded.
    """
    from dotenv import load_dotenv

    env_path = Path(path) if path else Path.cwd() / ".env"
    if not env_path.is_file():
        if path:
            raise ConfigError(f".env file not found at {env_path}")
        return False
    load_dotenv(env_path, override=False)
    return True
