"""
Periodic maintenance for Balance data.

Nothing here is needed for correctness: every read filters on expiry and
status already. The loop keeps tables and the WAL small, and finishes
session-delete cascades that were interrupted before phase 2 completed.

One pass:
1. Delete email tokens past their expiry
2. Flip active sessions past expires_at to 'expired'
3. Reclaim uploaded files left behind in deleted sessions
4. Checkpoint the SQLite WAL

Usage:
    balance-maintenance --dry-run
"""

from __future__ import annotations

import argparse
import sqlite3
import threading
from typing import Any

from balance.auth.email_tokens import EmailTokenService
from balance.files.repository import FileRepository
from balance.infrastructure.database import checkpoint_wal
from balance.observability.logging import get_logger
from balance.observability.telemetry import log_event
from balance.sessions.repository import SessionRepository
from balance.sessions.service import SessionService
from balance.utils.timestamps import utc_now

logger = get_logger(__name__)

DEFAULT_SWEEP_LIMIT = 100


def sweep_deleted_sessions(
    sessions: SessionService, limit: int = DEFAULT_SWEEP_LIMIT, dry_run: bool = False
) -> dict[str, int]:
    """
    Finish phase 2 for sessions deleted while files were still uploaded.

    Returns:
        {"sessions_swept": int, "files_deleted": int, "storage_failures": int}
    """
    stats = {"sessions_swept": 0, "files_deleted": 0, "storage_failures": 0}

    leftovers = FileRepository.list_uploaded_in_deleted_sessions(limit=limit)
    session_ids = list(dict.fromkeys(record.session_id for record in leftovers))
    if not session_ids:
        return stats

    if dry_run:
        logger.info(
            "[DRY RUN] Would reclaim %d files from %d deleted sessions",
            len(leftovers),
            len(session_ids),
        )
        return stats

    for session_id in session_ids:
        result = sessions.cascade_delete_files(session_id)
        stats["sessions_swept"] += 1
        stats["files_deleted"] += result.files_deleted
        stats["storage_failures"] += len(result.storage_failures)

    if stats["storage_failures"]:
        logger.warning(
            "Session sweep completed with %d storage failures (%d files reclaimed)",
            stats["storage_failures"],
            stats["files_deleted"],
        )
    return stats


def run_maintenance(
    sessions: SessionService,
    email_tokens: EmailTokenService,
    dry_run: bool = False,
) -> dict[str, Any]:
    """
    Run one maintenance pass.

    Side Effects:
    - Deletes expired rows from email_tokens
    - Updates expired sessions' status
    - Deletes storage objects of deleted sessions and marks their files deleted
    - Truncates the WAL file
    """
    now = utc_now()
    stats: dict[str, Any] = {"dry_run": dry_run}

    if dry_run:
        stats["tokens_purged"] = 0
        stats["sessions_expired"] = 0
    else:
        stats["tokens_purged"] = email_tokens.purge_expired(now)
        stats["sessions_expired"] = SessionRepository.mark_expired(now)

    stats.update(sweep_deleted_sessions(sessions, dry_run=dry_run))

    if not dry_run:
        wal = checkpoint_wal()
        stats["wal_bytes_freed"] = wal["bytes_freed"]
        if wal["bytes_freed"] > 1024 * 1024:
            logger.info("WAL checkpoint freed %d MB", wal["bytes_freed"] // (1024 * 1024))

    log_event("maintenance.completed", **stats)
    return stats


def maintenance_loop(
    sessions: SessionService,
    email_tokens: EmailTokenService,
    interval_seconds: int,
    stop_event: threading.Event,
) -> None:
    """
    Background thread body: one pass every ``interval_seconds`` until stopped.

    Side Effects:
        - Calls run_maintenance() (database writes, storage deletes)
        - Logs failures and keeps running
    """
    # Let the app warm up before the first pass
    while not stop_event.wait(interval_seconds):
        try:
            run_maintenance(sessions, email_tokens)
        except (sqlite3.Error, OSError, RuntimeError) as e:
            logger.error("Maintenance pass failed: %s", e)


def start_maintenance_thread(
    sessions: SessionService,
    email_tokens: EmailTokenService,
    interval_seconds: int,
) -> tuple[threading.Thread, threading.Event]:
    stop_event = threading.Event()
    thread = threading.Thread(
        target=maintenance_loop,
        args=(sessions, email_tokens, interval_seconds, stop_event),
        name="balance-maintenance",
        daemon=True,
    )
    thread.start()
    logger.info("Maintenance background task started (%ds interval)", interval_seconds)
    return thread, stop_event


def main(argv: list[str] | None = None) -> int:
    """CLI entry point: run a single maintenance pass."""
    from balance.auth.access_tokens import AccessTokenIssuer
    from balance.config import get_settings
    from balance.infrastructure.database import init_database
    from balance.infrastructure.storage import ObjectStorage

    parser = argparse.ArgumentParser(description="Run one Balance maintenance pass.")
    parser.add_argument(
        "--dry-run", action="store_true", help="Report what would change without changing it."
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    init_database()
    sessions = SessionService(
        settings,
        ObjectStorage(settings),
        AccessTokenIssuer(
            settings.jwt_secret,
            settings.jwt_expires_in,
            settings.session_bootstrap_expires_in,
        ),
    )
    stats = run_maintenance(
        sessions, EmailTokenService(settings.magic_link_ttl_minutes), dry_run=args.dry_run
    )
    for key, value in stats.items():
        print(f"{key}: {value}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
