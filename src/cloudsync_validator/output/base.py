"""
Base Output Formatter
"""

from abc import ABC, abstractmethod
from enum import IntEnum
from typing import List

from ..main import BatchReport, SyncTask, ValidationResult


class OutputLevel(IntEnum):
    """Output verbosity levels"""
    QUIET = 0
    NORMAL = 1
    VERBOSE = 2
    DEBUG = 3


class BaseFormatter(ABC):
    """Base class for output formatters"""

    def __init__(self, level: OutputLevel = OutputLevel.NORMAL):
        self.level = level

    @abstractmethod
    def task_list(self, tasks: List[SyncTask]) -> None:
        """Format the list of Cloud Sync tasks"""
        pass

    @abstractmethod
    def task_started(self, task_id: int, index: int, total: int) -> None:
        """Format batch progress message"""
        pass

    @abstractmethod
    def task_result(self, result: ValidationResult) -> None:
        """Format the outcome of one task"""
        pass

    @abstractmethod
    def summary(self, report: BatchReport) -> None:
        """Format batch summary"""
        pass
