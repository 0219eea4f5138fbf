"""
Base Verification Engine Interface

All verification engines must implement this interface.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..main import Mismatch, MismatchKind
from ..remote import RemoteDefinition

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass
class EngineConfig:
    """Configuration for an engine"""
    name: str
    binary: str = "rclone"
    # Fixed worker pool size for full checks, never adapted at runtime
    checkers: int = 16
    transfers: int = 16
    sample_transfers: int = 8
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CheckOutcome:
    """Result of comparing a local tree against the decrypted remote"""
    passed: bool
    mismatches: List[Mismatch] = field(default_factory=list)
    files_checked: int = 0

    @classmethod
    def from_mismatches(cls, mismatches: List[Mismatch], files_checked: int) -> "CheckOutcome":
        return cls(passed=not mismatches, mismatches=mismatches, files_checked=files_checked)

    def count(self, kind: MismatchKind) -> int:
        return sum(1 for m in self.mismatches if m.kind == kind)


class VerificationEngine(ABC):
    """
    Base class for verification engines.

    An engine decrypts and compares; the validator only tells it what to
    compare. Transport failures (unreachable remote, rejected credentials)
    raise TransferError. A difference between the two sides is a failed
    CheckOutcome, not an exception.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig(name="base")

    @property
    def name(self) -> str:
        return self.config.name

    @abstractmethod
    async def list(self, definition: RemoteDefinition, limit: int = 20) -> List[str]:
        """
        List decrypted entry names, at most `limit` of them.

        Connectivity and decryption smoke test only, no content is read.
        """
        pass

    @abstractmethod
    async def quick(self, definition: RemoteDefinition, local_path: PathLike) -> CheckOutcome:
        """
        Compare local file sizes with decrypted remote file sizes.

        NOT bit-exact: two files of equal length with different bytes pass.
        Passes iff every file exists on both sides with the same size.
        """
        pass

    @abstractmethod
    async def full(self, definition: RemoteDefinition, local_path: PathLike) -> CheckOutcome:
        """
        Download and decrypt every remote file and compare checksums.

        Passes iff the local and remote file sets are identical and every
        pair has the same checksum. All files are evaluated before
        returning, so the mismatch list is complete.
        """
        pass

    @abstractmethod
    async def sample(self, definition: RemoteDefinition, size_cap_bytes: int) -> int:
        """
        Download and decrypt remote files until `size_cap_bytes` is reached.

        No comparison is made. Returns the number of files decrypted; an
        empty remote yields 0 without error.
        """
        pass

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Check engine availability"""
        pass
