"""
Report Delivery

Mail through the host's `mail` command and one-shot alerts through the
TrueNAS API.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Sequence

from .errors import NotificationError, UpstreamError

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Receives a finished report"""

    name: str = "notifier"

    @abstractmethod
    async def send(
        self,
        subject: str,
        body: str,
        success: bool,
        details_path: Optional[Path] = None,
    ) -> None:
        """Deliver the report, raising NotificationError on failure"""
        pass


class MailNotifier(Notifier):
    """Pipes the report into `mail -s SUBJECT RECIPIENT`"""

    name = "mail"

    def __init__(self, command: str = "/usr/bin/mail", recipient: str = "root"):
        self.command = command
        self.recipient = recipient

    async def send(
        self,
        subject: str,
        body: str,
        success: bool,
        details_path: Optional[Path] = None,
    ) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.command,
                "-s",
                subject,
                self.recipient,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise NotificationError(f"Cannot run {self.command}: {e}") from e

        _, stderr = await proc.communicate(body.encode("utf-8"))
        if proc.returncode != 0:
            raise NotificationError(
                f"{self.command} exited with {proc.returncode}: "
                f"{stderr.decode('utf-8', errors='replace').strip()}"
            )
        logger.info(f"Email notification sent to {self.recipient}")


class AlertNotifier(Notifier):
    """Raises a one-shot TrueNAS alert, by default only when validation failed"""

    name = "alert"

    def __init__(self, client, alert_name: str = "CloudSyncValidation", only_on_failure: bool = True):
        self.client = client
        self.alert_name = alert_name
        self.only_on_failure = only_on_failure

    async def send(
        self,
        subject: str,
        body: str,
        success: bool,
        details_path: Optional[Path] = None,
    ) -> None:
        if success and self.only_on_failure:
            return

        if success:
            level, message = "INFO", "Cloud Sync validation passed."
        else:
            level, message = "WARNING", "Cloud Sync validation failed."
        if details_path:
            message += f" Check {details_path} for details."

        try:
            await self.client.create_alert(self.alert_name, level, message)
        except UpstreamError as e:
            raise NotificationError(f"Failed to create TrueNAS alert: {e}") from e
        logger.info(f"TrueNAS alert created ({level})")


async def deliver(
    notifiers: Sequence[Notifier],
    subject: str,
    body: str,
    success: bool,
    details_path: Optional[Path] = None,
) -> List[str]:
    """
    Try every notifier, even after one fails.

    Returns the names of the notifiers that failed.
    """
    failed = []
    for notifier in notifiers:
        try:
            await notifier.send(subject, body, success, details_path=details_path)
        except NotificationError as e:
            logger.error(f"{notifier.name} notification failed: {e}")
            failed.append(notifier.name)
    return failed
