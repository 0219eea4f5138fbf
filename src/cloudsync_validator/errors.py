"""
Error Taxonomy

Exceptions raised by the validator. A content difference between the local
source and the backup is NOT an exception: it is a normal failed
CheckOutcome (see engines.base).
"""

from typing import List, Optional


class ValidatorError(Exception):
    """Base exception for validator errors"""
    pass


class ConfigError(ValidatorError):
    """Missing or invalid connection settings"""
    pass


class UpstreamError(ValidatorError):
    """Management API unreachable or returned a non-success response"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(UpstreamError):
    """Task or credential id does not exist"""
    pass


class UnsupportedProviderError(ValidatorError):
    """No transport mapping exists for a credential's provider"""

    def __init__(self, provider: str, supported: Optional[List[str]] = None):
        self.provider = provider
        self.supported = sorted(supported or [])
        message = f"Provider '{provider}' is not supported"
        if self.supported:
            message += f" (supported: {', '.join(self.supported)})"
        super().__init__(message)


class NotEncryptedError(ValidatorError):
    """Task has no encryption layer, so there is nothing to decrypt and compare"""
    pass


class AlreadyRunningError(ValidatorError):
    """Another live process holds the lock marker"""

    def __init__(self, holder_pid: int, lock_path: str):
        super().__init__(
            f"Another instance is already running (PID: {holder_pid}). "
            f"If this is incorrect, remove {lock_path}"
        )
        self.holder_pid = holder_pid
        self.lock_path = lock_path


class TransferError(ValidatorError):
    """Network or authentication failure while running the verification engine"""

    def __init__(self, message: str, exit_code: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class NotificationError(ValidatorError):
    """Report delivery failed"""
    pass
