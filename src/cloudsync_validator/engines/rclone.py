"""
rclone Verification Engine

Runs the rclone binary against a RemoteDefinition. rclone does the
transport, decryption and hashing; this module only builds command lines
and interprets exit codes and `--combined` reports.
"""

import asyncio
import functools
import logging
import subprocess
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..errors import ConfigError, TransferError
from ..main import Mismatch, MismatchKind
from ..remote import RemoteDefinition
from .base import CheckOutcome, EngineConfig, PathLike, VerificationEngine

logger = logging.getLogger(__name__)

# rclone exit codes that mean the remote could not be used at all
# 3: directory not found, 5: temporary error, 7: fatal error (e.g. auth)
FATAL_EXIT_CODES = {3, 5, 7}
EXIT_MAX_TRANSFER_REACHED = 8

# `rclone check --combined` line prefixes
_COMBINED_EQUAL = "="
_COMBINED_ONLY_SOURCE = "-"
_COMBINED_ONLY_DEST = "+"
_COMBINED_DIFFER = "*"
_COMBINED_ERROR = "!"


def rclone_obscure(secret: str, binary: str = "rclone") -> str:
    """
    Encode a secret the way rclone config files expect.

    The secret is fed on stdin so it never shows up in the process list.
    This is obfuscation, not encryption.
    """
    try:
        proc = subprocess.run(
            [binary, "obscure", "-"],
            input=secret,
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError as e:
        raise ConfigError(f"rclone binary not found: {binary}") from e

    if proc.returncode != 0:
        raise TransferError(
            "rclone obscure failed",
            exit_code=proc.returncode,
            stderr=proc.stderr.strip(),
        )
    return proc.stdout.strip()


def make_obscure(binary: str = "rclone"):
    """Bind rclone_obscure to a binary for RemoteDefinitionBuilder"""
    return functools.partial(rclone_obscure, binary=binary)


def parse_combined_report(output: str, size_only: bool = False) -> Tuple[List[Mismatch], int]:
    """
    Parse `rclone check --combined -` output.

    Source is the local tree and destination the decrypted remote, so a
    file only in the source is missing on the remote and vice versa.
    Returns (mismatches, files_evaluated).
    """
    mismatches: List[Mismatch] = []
    evaluated = 0

    for line in output.splitlines():
        if len(line) < 3 or line[1] != " ":
            continue
        marker, path = line[0], line[2:]
        evaluated += 1

        if marker == _COMBINED_EQUAL:
            continue
        elif marker == _COMBINED_ONLY_SOURCE:
            mismatches.append(Mismatch(path=path, kind=MismatchKind.MISSING, side="remote"))
        elif marker == _COMBINED_ONLY_DEST:
            mismatches.append(Mismatch(path=path, kind=MismatchKind.MISSING, side="local"))
        elif marker == _COMBINED_DIFFER:
            kind = MismatchKind.SIZE if size_only else MismatchKind.MISMATCH
            mismatches.append(Mismatch(path=path, kind=kind))
        elif marker == _COMBINED_ERROR:
            mismatches.append(Mismatch(path=path, kind=MismatchKind.ERROR, detail="could not be compared"))
        else:
            evaluated -= 1

    return mismatches, evaluated


def _tail(text: str, lines: int = 20) -> str:
    return "\n".join(text.strip().splitlines()[-lines:])


class RcloneEngine(VerificationEngine):
    """
    Engine backed by the rclone CLI.

    Every invocation reads the definition's config file, so rclone never
    sees the user's own rclone.conf.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        super().__init__(config or EngineConfig(name="rclone"))

    async def list(self, definition: RemoteDefinition, limit: int = 20) -> List[str]:
        """Stream `rclone lsf` and stop once `limit` entries have been read"""
        cmd = self._command(definition, "lsf", "-R", "--files-only", definition.crypt_remote)
        proc = await self._spawn(cmd)
        stderr_reader = asyncio.ensure_future(proc.stderr.read())

        entries: List[str] = []
        try:
            while len(entries) < limit:
                line = await proc.stdout.readline()
                if not line:
                    break
                entries.append(line.decode("utf-8", errors="replace").rstrip("\n"))
        except BaseException:
            await self._kill(proc)
            stderr_reader.cancel()
            raise

        if len(entries) >= limit:
            await self._kill(proc)
            stderr_reader.cancel()
            return entries

        returncode = await proc.wait()
        stderr = (await stderr_reader).decode("utf-8", errors="replace")
        if returncode != 0:
            raise TransferError(
                f"rclone lsf failed with exit code {returncode}",
                exit_code=returncode,
                stderr=_tail(stderr),
            )
        return entries

    async def quick(self, definition: RemoteDefinition, local_path: PathLike) -> CheckOutcome:
        logger.warning("Size-only comparison - NOT bit-perfect verification")
        return await self._check(definition, local_path, ["--size-only"], size_only=True)

    async def full(self, definition: RemoteDefinition, local_path: PathLike) -> CheckOutcome:
        logger.info("Downloading and verifying all files - this may take a long time")
        return await self._check(
            definition,
            local_path,
            ["--download", "--transfers", str(self.config.transfers)],
            size_only=False,
        )

    async def sample(self, definition: RemoteDefinition, size_cap_bytes: int) -> int:
        with tempfile.TemporaryDirectory(prefix="cloudsync-sample-") as sample_dir:
            cmd = self._command(
                definition,
                "copy",
                definition.crypt_remote,
                sample_dir,
                "--max-transfer",
                str(size_cap_bytes),
                "--cutoff-mode",
                "soft",
                "--transfers",
                str(self.config.sample_transfers),
            )
            returncode, _, stderr = await self._run(cmd)
            count = sum(1 for p in Path(sample_dir).rglob("*") if p.is_file())

        if returncode in (0, EXIT_MAX_TRANSFER_REACHED):
            return count
        if count > 0 and returncode not in FATAL_EXIT_CODES:
            logger.warning(f"rclone copy exited with {returncode} after decrypting {count} file(s)")
            return count
        raise TransferError(
            f"rclone copy failed with exit code {returncode}, no file could be decrypted",
            exit_code=returncode,
            stderr=_tail(stderr),
        )

    async def health_check(self) -> Dict[str, Any]:
        """Check the rclone binary is runnable"""
        try:
            returncode, stdout, stderr = await self._run([self.config.binary, "version"])
        except TransferError as e:
            return {"status": "unhealthy", "engine": self.name, "error": str(e)}
        if returncode != 0:
            return {"status": "unhealthy", "engine": self.name, "error": _tail(stderr, 3)}
        version = stdout.splitlines()[0] if stdout else "unknown"
        return {"status": "healthy", "engine": self.name, "version": version}

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _check(
        self,
        definition: RemoteDefinition,
        local_path: PathLike,
        extra: Sequence[str],
        size_only: bool,
    ) -> CheckOutcome:
        cmd = self._command(
            definition,
            "check",
            str(local_path),
            definition.crypt_remote,
            "--combined",
            "-",
            "--checkers",
            str(self.config.checkers),
            *extra,
        )
        returncode, stdout, stderr = await self._run(cmd)
        mismatches, evaluated = parse_combined_report(stdout, size_only=size_only)

        if returncode in FATAL_EXIT_CODES or (returncode != 0 and not mismatches):
            raise TransferError(
                f"rclone check failed with exit code {returncode}",
                exit_code=returncode,
                stderr=_tail(stderr),
            )

        return CheckOutcome.from_mismatches(mismatches, files_checked=evaluated)

    def _command(self, definition: RemoteDefinition, *args: str) -> List[str]:
        return [self.config.binary, *args, "--config", str(definition.config_path())]

    async def _spawn(self, cmd: List[str]) -> asyncio.subprocess.Process:
        logger.debug(f"Running: {' '.join(cmd[:2])} ...")
        try:
            return await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise TransferError(f"rclone binary not found: {cmd[0]}") from e

    async def _run(self, cmd: List[str]) -> Tuple[int, str, str]:
        proc = await self._spawn(cmd)
        try:
            stdout, stderr = await proc.communicate()
        except BaseException:
            await self._kill(proc)
            raise
        return (
            proc.returncode,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
