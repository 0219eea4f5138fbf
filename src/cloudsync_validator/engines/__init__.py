"""
Verification Engines

Engines that decrypt and compare backup copies.
"""

from .base import CheckOutcome, EngineConfig, VerificationEngine
from .memory import InMemoryEngine
from .rclone import RcloneEngine, make_obscure, rclone_obscure

__all__ = [
    "VerificationEngine",
    "EngineConfig",
    "CheckOutcome",
    "RcloneEngine",
    "InMemoryEngine",
    "make_obscure",
    "rclone_obscure",
]
