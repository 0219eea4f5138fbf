"""
In-Memory Engine for Testing

Holds decrypted remote trees as dictionaries and compares them against real
local directories, so the builder and orchestrator can be exercised
without rclone or network access.
"""

import asyncio
import hashlib
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

from ..errors import TransferError
from ..main import Mismatch, MismatchKind
from ..remote import RemoteDefinition
from .base import CheckOutcome, EngineConfig, PathLike, VerificationEngine

logger = logging.getLogger(__name__)


def _md5(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def _md5_file(path: Path) -> str:
    h = hashlib.md5()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


class InMemoryEngine(VerificationEngine):
    """
    Fake engine for tests.

    `remotes` maps a crypt remote (e.g. "remote:backups/photos") to
    its decrypted contents, {relative_path: bytes}. Remotes listed in
    `unreachable` raise TransferError, as does any remote not in `remotes`.
    """

    def __init__(
        self,
        remotes: Optional[Dict[str, Dict[str, bytes]]] = None,
        unreachable: Optional[Set[str]] = None,
        config: Optional[EngineConfig] = None,
    ):
        super().__init__(config or EngineConfig(name="memory", checkers=4))
        self.remotes: Dict[str, Dict[str, bytes]] = remotes or {}
        self.unreachable: Set[str] = unreachable or set()
        self.calls: List[Tuple[str, str]] = []
        self.max_parallel_seen = 0
        self._in_flight = 0

    async def list(self, definition: RemoteDefinition, limit: int = 20) -> List[str]:
        files = self._remote_files(definition, "list")
        return sorted(files)[:limit]

    async def quick(self, definition: RemoteDefinition, local_path: PathLike) -> CheckOutcome:
        remote = self._remote_files(definition, "quick")
        local = self._local_files(local_path)
        mismatches = self._missing(local, remote)

        for path in sorted(set(local) & set(remote)):
            local_size = local[path].stat().st_size
            if local_size != len(remote[path]):
                mismatches.append(Mismatch(
                    path=path,
                    kind=MismatchKind.SIZE,
                    detail=f"local {local_size} bytes, remote {len(remote[path])} bytes",
                ))

        return CheckOutcome.from_mismatches(mismatches, files_checked=len(set(local) | set(remote)))

    async def full(self, definition: RemoteDefinition, local_path: PathLike) -> CheckOutcome:
        remote = self._remote_files(definition, "full")
        local = self._local_files(local_path)
        mismatches = self._missing(local, remote)

        pool = asyncio.Semaphore(self.config.checkers)

        async def compare(path: str) -> Optional[Mismatch]:
            async with pool:
                self._in_flight += 1
                self.max_parallel_seen = max(self.max_parallel_seen, self._in_flight)
                try:
                    local_sum = await asyncio.to_thread(_md5_file, local[path])
                    remote_sum = _md5(remote[path])
                finally:
                    self._in_flight -= 1
            if local_sum != remote_sum:
                return Mismatch(path=path, kind=MismatchKind.MISMATCH, detail="md5 differs")
            return None

        paired = sorted(set(local) & set(remote))
        results = await asyncio.gather(*(compare(p) for p in paired))
        mismatches.extend(m for m in results if m is not None)

        return CheckOutcome.from_mismatches(mismatches, files_checked=len(set(local) | set(remote)))

    async def sample(self, definition: RemoteDefinition, size_cap_bytes: int) -> int:
        files = self._remote_files(definition, "sample")
        transferred = 0
        count = 0
        for path in sorted(files):
            # Soft cutoff: a transfer started below the cap runs to completion
            if transferred >= size_cap_bytes:
                break
            transferred += len(files[path])
            count += 1
        return count

    async def health_check(self) -> Dict[str, Any]:
        return {
            "status": "healthy",
            "engine": self.name,
            "remotes": len(self.remotes),
        }

    # =========================================================================
    # Helpers
    # =========================================================================

    def _remote_files(self, definition: RemoteDefinition, mode: str) -> Dict[str, bytes]:
        if definition.closed:
            raise ValueError("Remote definition already closed")
        key = definition.crypt.remote
        self.calls.append((mode, key))
        if key in self.unreachable:
            raise TransferError(f"Cannot reach {key}: connection refused", exit_code=7)
        if key not in self.remotes:
            raise TransferError(f"Directory not found: {key}", exit_code=3)
        return self.remotes[key]

    @staticmethod
    def _local_files(local_path: PathLike) -> Dict[str, Path]:
        root = Path(local_path)
        if not root.is_dir():
            raise TransferError(f"Local directory not found: {root}", exit_code=3)
        return {p.relative_to(root).as_posix(): p for p in root.rglob("*") if p.is_file()}

    @staticmethod
    def _missing(local: Dict[str, Path], remote: Dict[str, bytes]) -> List[Mismatch]:
        mismatches = [
            Mismatch(path=p, kind=MismatchKind.MISSING, side="remote")
            for p in sorted(set(local) - set(remote))
        ]
        mismatches.extend(
            Mismatch(path=p, kind=MismatchKind.MISSING, side="local")
            for p in sorted(set(remote) - set(local))
        )
        return mismatches
