#!/usr/bin/env python3
"""
Upload Service

Command-line entry point for the upload queue.

Accounts and the queue are persisted under UPLOAD_DATA_DIR, so commands can
be run one at a time:

    python upload_service.py add-s3 --name Backups --bucket my-bucket \\
        --access-key-id AKIA... --secret-access-key ...
    python upload_service.py add-sc-player --name Player --api-key scplayer_...
    python upload_service.py accounts
    python upload_service.py queue ACCOUNT_ID /videos/run.mp4 --title "Run"
    python upload_service.py run            # start the queue, wait until idle
    python upload_service.py status

Use --mock to exercise the queue without touching any remote service.
"""

import argparse
import json
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from config.settings import LOG_DIR, LOG_SERVICE_FILE
from core.event_bus import ALL_EVENTS
from upload import UploadConfig, UploadError, UploadManager
from upload.constants import (
    EVENT_STATE_CHANGED,
    EVENT_UPLOAD_PROGRESS,
    UPLOAD_METHOD_DIRECT,
    UPLOAD_METHOD_S3_INDEX,
)

logger = logging.getLogger(__name__)


def setup_logging(level: int = logging.INFO) -> None:
    """
    Setup logging with rotation.

    Logs to both console and file:
    - Daily rotation at midnight
    - Keep 7 days of logs
    """
    root = logging.getLogger()
    root.setLevel(level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter("%(message)s | %(name)s"))
    root.addHandler(console_handler)

    file_format = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    log_file = Path(LOG_DIR) / LOG_SERVICE_FILE
    try:
        file_handler = logging.handlers.TimedRotatingFileHandler(
            str(log_file),
            when="midnight",
            interval=1,
            backupCount=7,
            encoding="utf-8",
        )
    except (PermissionError, FileNotFoundError):
        # Fallback to local logs directory if LOG_DIR not writable
        logs_dir = Path("logs")
        logs_dir.mkdir(exist_ok=True)

        fallback_log = logs_dir / LOG_SERVICE_FILE
        root.warning(f"Cannot write to {log_file}, using fallback: {fallback_log}")

        file_handler = logging.handlers.TimedRotatingFileHandler(
            str(fallback_log),
            when="midnight",
            interval=1,
            backupCount=7,
            encoding="utf-8",
        )

    file_handler.setLevel(level)
    file_handler.setFormatter(file_format)
    root.addHandler(file_handler)


# =============================================================================
# COMMANDS
# =============================================================================


def cmd_accounts(manager: UploadManager, args: argparse.Namespace) -> int:
    accounts = manager.list_accounts()
    if not accounts:
        logger.info("No accounts configured")
        return 0

    for account in accounts:
        logger.info(
            f"  {account['id']}  {account['type']:<10} {account['name']} "
            f"({account['upload_count']} uploads)",
        )
    return 0


def cmd_add_s3(manager: UploadManager, args: argparse.Namespace) -> int:
    config: Dict[str, Any] = {
        "bucket": args.bucket,
        "region": args.region,
        "prefix": args.prefix,
        "storage_class": args.storage_class,
    }
    if args.endpoint:
        config["endpoint"] = args.endpoint
        config["force_path_style"] = args.force_path_style
    if args.public_url:
        config["public_url"] = args.public_url

    account = manager.add_account(
        "s3",
        args.name,
        config,
        {
            "access_key_id": args.access_key_id,
            "secret_access_key": args.secret_access_key,
        },
    )
    logger.info(f"✅ S3 account added: {account['id']}")
    return 0


def cmd_add_sc_player(manager: UploadManager, args: argparse.Namespace) -> int:
    config: Dict[str, Any] = {}
    if args.base_url:
        config["base_url"] = args.base_url

    account = manager.add_account(
        "sc-player",
        args.name,
        config,
        {"api_key": args.api_key},
    )

    info = account.get("account_info") or {}
    logger.info(
        f"✅ StarCapture Player account added: {account['id']} "
        f"({info.get('username', 'unknown user')})",
    )
    return 0


def cmd_queue(manager: UploadManager, args: argparse.Namespace) -> int:
    metadata: Dict[str, Any] = {}
    if args.title:
        metadata["title"] = args.title
    if args.description:
        metadata["description"] = args.description
    if args.privacy:
        metadata["privacy"] = args.privacy
    if args.character_id:
        metadata["character_id"] = args.character_id
    if args.upload_method:
        metadata["upload_method"] = args.upload_method
    if args.s3_account_id:
        metadata["s3_account_id"] = args.s3_account_id
    if args.include_metadata:
        metadata["include_metadata"] = True
    if args.include_thumbnails:
        metadata["include_thumbnails"] = True
    if args.make_public:
        metadata["make_public"] = True
    if args.preserve_filename:
        metadata["preserve_filename"] = True

    job = manager.queue_upload(args.account_id, args.file_path, metadata)
    logger.info(f"✅ Upload queued: {job['id']}")
    return 0


def cmd_run(manager: UploadManager, args: argparse.Namespace) -> int:
    """Start the queue and block until every queued upload finished"""

    def on_event(event_type: str, data: Any) -> None:
        if event_type == EVENT_UPLOAD_PROGRESS:
            logger.debug(f"{data['upload_id']}: {data['progress']:.1f}%")
        elif event_type != EVENT_STATE_CHANGED:
            logger.debug(f"Event: {event_type}")

    pending = {job["id"] for job in manager.get_upload_status()["queued"]}
    unsubscribe = manager.event_bus.subscribe(ALL_EVENTS, on_event)
    try:
        manager.start_queue()
        idle = manager.wait_until_idle(timeout=args.timeout)
    finally:
        unsubscribe()

    if not idle:
        logger.warning("Timed out waiting for uploads to finish")
        return 1

    failed = [
        job for job in manager.get_upload_status()["completed"]
        if job["id"] in pending and job["status"] == "failed"
    ]
    for job in failed:
        logger.error(f"❌ {job['id']} ({job['file_path']}): {job['error']}")
    return 1 if failed else 0


def cmd_status(manager: UploadManager, args: argparse.Namespace) -> int:
    print(json.dumps(manager.get_state(), indent=2, default=str))
    return 0


# =============================================================================
# ENTRY POINT
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Multi-provider video upload queue",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", type=str, default=None, help="Path to upload.yaml")
    parser.add_argument(
        "--mock",
        action="store_true",
        help="Use simulated providers (no network)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    accounts = subparsers.add_parser("accounts", help="List configured accounts")
    accounts.set_defaults(func=cmd_accounts)

    add_s3 = subparsers.add_parser("add-s3", help="Add an S3 account")
    add_s3.add_argument("--name", required=True)
    add_s3.add_argument("--bucket", required=True)
    add_s3.add_argument("--access-key-id", required=True)
    add_s3.add_argument("--secret-access-key", required=True)
    add_s3.add_argument("--region", default="us-east-1")
    add_s3.add_argument("--prefix", default="")
    add_s3.add_argument("--storage-class", default="STANDARD")
    add_s3.add_argument("--endpoint", default=None, help="S3-compatible endpoint URL")
    add_s3.add_argument("--force-path-style", action="store_true")
    add_s3.add_argument("--public-url", default=None)
    add_s3.set_defaults(func=cmd_add_s3)

    add_sc = subparsers.add_parser("add-sc-player", help="Add a StarCapture Player account")
    add_sc.add_argument("--name", required=True)
    add_sc.add_argument("--api-key", required=True)
    add_sc.add_argument("--base-url", default=None)
    add_sc.set_defaults(func=cmd_add_sc_player)

    queue = subparsers.add_parser("queue", help="Queue a file for upload")
    queue.add_argument("account_id")
    queue.add_argument("file_path")
    queue.add_argument("--title", default=None)
    queue.add_argument("--description", default=None)
    queue.add_argument("--privacy", default=None)
    queue.add_argument("--character-id", default=None)
    queue.add_argument(
        "--upload-method",
        choices=[UPLOAD_METHOD_DIRECT, UPLOAD_METHOD_S3_INDEX],
        default=None,
    )
    queue.add_argument("--s3-account-id", default=None)
    queue.add_argument("--include-metadata", action="store_true")
    queue.add_argument("--include-thumbnails", action="store_true")
    queue.add_argument("--make-public", action="store_true", help="S3: public-read ACL")
    queue.add_argument("--preserve-filename", action="store_true", help="S3: no timestamp prefix")
    queue.set_defaults(func=cmd_queue)

    run = subparsers.add_parser("run", help="Process the queue until it is empty")
    run.add_argument("--timeout", type=float, default=None, help="Seconds to wait")
    run.set_defaults(func=cmd_run)

    status = subparsers.add_parser("status", help="Print the queue state as JSON")
    status.set_defaults(func=cmd_status)

    return parser


def main(argv: Optional[list] = None) -> int:
    """
    Main entry point.

    Sets up logging, builds the manager and runs one command.
    """
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    config = UploadConfig(Path(args.config)) if args.config else UploadConfig()
    manager = UploadManager(config=config, provider_mode="mock" if args.mock else "auto")
    manager.initialize()

    try:
        return args.func(manager, args)
    except UploadError as e:
        logger.error(f"❌ {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    finally:
        manager.shutdown()


if __name__ == "__main__":
    sys.exit(main())
