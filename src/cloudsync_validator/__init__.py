"""
Cloud Sync Validator

Verifies that encrypted TrueNAS Cloud Sync backups are byte-identical to
their local source. Task and credential settings come from the TrueNAS
API; decryption and comparison are done by rclone.
"""

__version__ = "1.0.0"

from .errors import (
    AlreadyRunningError,
    ConfigError,
    NotEncryptedError,
    NotFoundError,
    NotificationError,
    TransferError,
    UnsupportedProviderError,
    UpstreamError,
    ValidatorError,
)
from .main import (
    BatchReport,
    Credential,
    Mismatch,
    MismatchKind,
    SyncTask,
    ValidationMode,
    ValidationResult,
    ValidationStatus,
    ValidatorConfig,
)
from .api_client import TrueNASClient
from .engines import CheckOutcome, InMemoryEngine, RcloneEngine, VerificationEngine
from .lock import ConcurrencyGuard
from .orchestrator import CloudSyncValidator
from .remote import RemoteDefinition, RemoteDefinitionBuilder

__all__ = [
    # Core
    "CloudSyncValidator",
    "TrueNASClient",
    "RemoteDefinitionBuilder",
    "RemoteDefinition",
    "ConcurrencyGuard",
    # Engines
    "VerificationEngine",
    "RcloneEngine",
    "InMemoryEngine",
    "CheckOutcome",
    # Types
    "SyncTask",
    "Credential",
    "Mismatch",
    "MismatchKind",
    "ValidationMode",
    "ValidationResult",
    "ValidationStatus",
    "BatchReport",
    "ValidatorConfig",
    # Errors
    "ValidatorError",
    "ConfigError",
    "UpstreamError",
    "NotFoundError",
    "UnsupportedProviderError",
    "NotEncryptedError",
    "AlreadyRunningError",
    "TransferError",
    "NotificationError",
    # Meta
    "__version__",
]
