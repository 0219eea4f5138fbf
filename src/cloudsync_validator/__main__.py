"""
Cloud Sync Validator CLI

Command-line interface for operators and cron.
"""

import argparse
import asyncio
import logging
import os
import shutil
import signal
import sys
from contextlib import nullcontext
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from . import __version__
from .api_client import TrueNASClient
from .engines import EngineConfig, RcloneEngine, make_obscure
from .errors import ConfigError, NotificationError, ValidatorError
from .lock import ConcurrencyGuard
from .logging_config import setup_logging
from .main import ValidationMode, ValidatorConfig, load_env_file
from .notify import AlertNotifier, MailNotifier, deliver
from .orchestrator import CloudSyncValidator
from .output import ConsoleFormatter, OutputLevel, render_report, report_header, report_subject
from .remote import RemoteDefinitionBuilder

logger = logging.getLogger("cloudsync_validator.cli")

EPILOG = """\
Examples:
  cloudsync-validator list
  cloudsync-validator test 3          # Verify connection works
  cloudsync-validator sample 3        # Quick decryption test (~50MB)
  cloudsync-validator validate 3      # Full bit-perfect verification (slow!)
  cloudsync-validator validate-all    # Validate all encrypted tasks
  cloudsync-validator cron            # For scheduled runs with email alerts

Cron setup (TrueNAS GUI):
  System -> Advanced -> Cron Jobs -> Add
  Command: cloudsync-validator --env-file /root/cloudsync.env cron
  Schedule: Weekly (e.g., Sunday 2:00 AM)
"""


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        prog="cloudsync-validator",
        description="Validate TrueNAS Cloud Sync encrypted backups using rclone",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("list", help="List all cloud sync tasks")

    task_commands = {
        "validate": "Full bit-perfect verification (downloads all files)",
        "quick": "Quick size-only check (fast but not bit-perfect)",
        "sample": "Download ~50MB sample to verify decryption works",
        "test": "Test connection by listing remote files",
    }
    for name, help_text in task_commands.items():
        cmd_parser = subparsers.add_parser(name, help=help_text)
        cmd_parser.add_argument("task_id", type=int, help="Cloud Sync task ID")

    subparsers.add_parser("validate-all", help="Validate ALL encrypted tasks (for manual run)")
    subparsers.add_parser("quick-all", help="Quick check all encrypted tasks")
    subparsers.add_parser("cron", help="Validate all + email notification (for cron jobs)")
    subparsers.add_parser("test-email", help="Send a test email")
    subparsers.add_parser("test-alert", help="Create a test alert in TrueNAS")

    # Global options
    parser.add_argument(
        "--env-file",
        help="Load settings from this .env file (default: ./.env if present)",
    )
    parser.add_argument(
        "--config",
        help="YAML config file path",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="count",
        default=0,
        help="Increase verbosity",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Quiet mode",
    )
    parser.add_argument(
        "--log-file",
        help="Log to file",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored output",
    )

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help(sys.stderr)
        parser.exit(2)
    return args


def _raise_on_signal(signum, frame):
    # Turns SIGTERM into an exception so lock release and temp-file cleanup run
    raise SystemExit(128 + signum)


def require_rclone(config: ValidatorConfig) -> None:
    if shutil.which(config.rclone_binary) is None:
        raise ConfigError(f"Missing: {config.rclone_binary} (install rclone first)")


def build_validator(config: ValidatorConfig, client: TrueNASClient) -> CloudSyncValidator:
    """Wire the production builder and engine"""
    engine = RcloneEngine(EngineConfig(
        name="rclone",
        binary=config.rclone_binary,
        checkers=config.checkers,
        transfers=config.transfers,
        sample_transfers=config.sample_transfers,
    ))
    return CloudSyncValidator(
        fetcher=client,
        builder=RemoteDefinitionBuilder(make_obscure(config.rclone_binary)),
        engine=engine,
        config=config,
    )


def _attach_progress(validator: CloudSyncValidator, formatter: ConsoleFormatter) -> None:
    def on_task_started(event: str, task_id: int, index: int, total: int, **kwargs):
        formatter.task_started(task_id, index, total)

    def on_task_completed(event: str, result, **kwargs):
        formatter.task_result(result)

    validator.on("task.started", on_task_started)
    validator.on("task.completed", on_task_completed)


# =============================================================================
# Commands
# =============================================================================


async def list_tasks(config: ValidatorConfig, formatter: ConsoleFormatter) -> int:
    """Show every Cloud Sync task"""
    async with TrueNASClient(config) as client:
        tasks = await client.list_tasks()

    if not tasks:
        logger.error("No cloud sync tasks found")
        return 1
    formatter.task_list(tasks)
    return 0


async def validate_one(
    config: ValidatorConfig,
    formatter: ConsoleFormatter,
    task_id: int,
    mode: ValidationMode,
    locked: bool = True,
) -> int:
    """Validate a single task"""
    guard = ConcurrencyGuard(config.lock_file) if locked else nullcontext()
    with guard:
        async with TrueNASClient(config) as client:
            validator = build_validator(config, client)
            result = await validator.validate_task(task_id, mode)

    formatter.task_result(result)
    return 0 if result.passed else 1


async def validate_all(config: ValidatorConfig, formatter: ConsoleFormatter, mode: ValidationMode) -> int:
    """Validate every encrypted task"""
    with ConcurrencyGuard(config.lock_file):
        async with TrueNASClient(config) as client:
            validator = build_validator(config, client)
            _attach_progress(validator, formatter)
            report = await validator.run_all(mode)

    formatter.summary(report)
    return 0 if report.passed else 1


def write_cron_log(config: ValidatorConfig, body: str) -> Optional[Path]:
    path = config.log_dir / f"cloud-sync-validation-{datetime.now().strftime('%Y%m%d-%H%M%S')}.log"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(body)
    except OSError as e:
        logger.warning(f"Cannot write report to {path}: {e}")
        return None
    return path


def aborted_body(error: BaseException) -> str:
    return report_header() + f"\nValidation aborted: {type(error).__name__}: {error}\n"


def fallback_config() -> ValidatorConfig:
    """Settings a report can still be delivered with when the real config is unusable"""
    defaults = ValidatorConfig()
    return ValidatorConfig(
        mail_to=os.getenv("VALIDATOR_MAIL_TO", defaults.mail_to),
        mail_command=os.getenv("VALIDATOR_MAIL_COMMAND", defaults.mail_command),
        log_dir=Path(os.getenv("VALIDATOR_LOG_DIR", str(defaults.log_dir))),
    )


async def publish_report(
    config: ValidatorConfig,
    body: str,
    success: bool,
    client: Optional[TrueNASClient] = None,
) -> int:
    """Print, write to the log directory, mail, and alert (when a client is available)"""
    print(body)
    log_path = write_cron_log(config, body)

    notifiers = [MailNotifier(config.mail_command, config.mail_to)]
    if client is not None:
        notifiers.append(AlertNotifier(client, alert_name=config.alert_name))
    failed = await deliver(notifiers, report_subject(success), body, success, details_path=log_path)

    if failed:
        return 1
    return 0 if success else 1


async def run_cron(config: ValidatorConfig, formatter: ConsoleFormatter) -> int:
    """
    Full validation of every encrypted task, then notify.

    A report is always sent, whether validation passed, failed or could not
    run at all.
    """
    client: Optional[TrueNASClient] = None
    try:
        try:
            config.validate()
            require_rclone(config)
            client = TrueNASClient(config)
            await client.open()
            with ConcurrencyGuard(config.lock_file):
                validator = build_validator(config, client)
                _attach_progress(validator, formatter)
                report = await validator.run_all(ValidationMode.FULL)
            body = report_header() + "\n" + render_report(report)
            success = report.passed
        except ValidatorError as e:
            logger.error(f"Validation aborted: {e}")
            body, success = aborted_body(e), False
        except Exception as e:
            logger.exception("Validation aborted by an unexpected error")
            body, success = aborted_body(e), False

        return await publish_report(config, body, success, client)
    finally:
        if client is not None:
            await client.close()


async def send_test_email(config: ValidatorConfig) -> int:
    import socket

    body = "\n".join([
        "This is a test email from the cloud sync validator.",
        "",
        f"Host: {socket.gethostname()}",
        f"Date: {datetime.now().strftime('%a %b %d %H:%M:%S %Y')}",
        "",
        "If you received this email, notifications are working correctly!",
    ])
    notifier = MailNotifier(config.mail_command, config.mail_to)
    try:
        await notifier.send("[TrueNAS] Cloud Sync Validation - Test Email", body, success=True)
    except NotificationError as e:
        logger.error(f"✗ Failed to send email: {e}")
        return 1
    print("✓ Test email sent!")
    return 0


async def send_test_alert(config: ValidatorConfig) -> int:
    async with TrueNASClient(config) as client:
        await client.create_alert(
            "CloudSyncValidationTest",
            "INFO",
            "Test alert from cloud sync validator. You can dismiss this.",
        )
    print("✓ Test alert created!")
    print("Check TrueNAS UI → Alerts (bell icon top right)")
    return 0


async def dispatch(args: argparse.Namespace, config: ValidatorConfig, formatter: ConsoleFormatter) -> int:
    """Run the selected command"""
    command = args.command

    if command == "test-email":
        return await send_test_email(config)
    if command == "cron":
        return await run_cron(config, formatter)

    config.validate()
    if command == "test-alert":
        return await send_test_alert(config)
    if command == "list":
        return await list_tasks(config, formatter)

    require_rclone(config)
    if command == "validate":
        return await validate_one(config, formatter, args.task_id, ValidationMode.FULL)
    if command == "quick":
        return await validate_one(config, formatter, args.task_id, ValidationMode.QUICK)
    if command == "sample":
        return await validate_one(config, formatter, args.task_id, ValidationMode.SAMPLE)
    if command == "test":
        return await validate_one(config, formatter, args.task_id, ValidationMode.LIST, locked=False)
    if command == "validate-all":
        return await validate_all(config, formatter, ValidationMode.FULL)
    if command == "quick-all":
        return await validate_all(config, formatter, ValidationMode.QUICK)

    print(f"Unknown command: {command}", file=sys.stderr)
    return 2


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = parse_args(argv)

    log_level = "DEBUG" if args.verbose >= 1 else "INFO"
    if args.quiet:
        log_level = "ERROR"

    setup_logging(
        level=log_level,
        log_file=args.log_file,
        use_colors=not args.no_color,
    )

    output_level = OutputLevel.VERBOSE if args.verbose >= 1 else (
        OutputLevel.QUIET if args.quiet else OutputLevel.NORMAL
    )
    formatter = ConsoleFormatter(level=output_level, use_colors=not args.no_color)

    signal.signal(signal.SIGTERM, _raise_on_signal)

    try:
        try:
            load_env_file(args.env_file)
            config = ValidatorConfig.from_yaml(args.config) if args.config else ValidatorConfig.from_env()
        except ConfigError as e:
            if args.command != "cron":
                raise
            # cron still reports a configuration it cannot load
            logger.error(f"Validation aborted: {e}")
            return asyncio.run(publish_report(fallback_config(), aborted_body(e), success=False))
        return asyncio.run(dispatch(args, config, formatter))
    except ValidatorError as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.error("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
