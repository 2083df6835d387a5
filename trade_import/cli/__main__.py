from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from dotenv import load_dotenv

from ..config.loader import DEFAULT_CONFIG_PATH, ConfigError, load_config
from ..db.base import SessionNotFound, SessionStore, StoreError, TradeStore
from ..db.memory import InMemorySessionStore, InMemoryTradeStore
from ..logging.error_log import ErrorLogBuffer
from ..logging.init import log_summary, setup_logging
from ..models.config_models import ImportConfig
from ..models.import_session import ImportStatus, InvalidSessionTransition
from ..parsing.reader import InputFormatError
from ..services.executor import ImportPipeline
from ..services.sessions import ConcurrencyConflict
from ..services.summary import render_preview_line, render_summary_line

"""CLI entrypoint: python -m trade_import.cli <command>.

Commands:
- preview FILE         classify rows without writing anything
- import FILE          import with session tracking, prints the SUMMARY line
- history              recent import sessions of a user
- delete-session ID    remove a finished session (optionally with its trades)
- init-db              apply the PostgreSQL schema

Exit codes: 0 completed, 2 partial/failed (or preview with errors), 1 fatal.
DISABLE_DB_CONNECT=1 swaps PostgreSQL for in-memory stores.
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1


def _resolve_dsn(cfg: ImportConfig) -> str:
    """Connection string, highest priority first:

    1. DATABASE_URL / PGDSN (after .env has been loaded with override)
    2. individual PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
    3. the `database` section of the YAML config
    """
    db_cfg = cfg.database
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


@contextmanager
def _stores(cfg: ImportConfig, *, max_connections: int) -> Iterator[tuple[TradeStore, SessionStore]]:
    if os.getenv("DISABLE_DB_CONNECT") == "1":
        logging.getLogger("trade_import").debug("DB connect disabled via DISABLE_DB_CONNECT=1 -> in-memory stores")
        yield InMemoryTradeStore(), InMemorySessionStore()
        return

    # psycopg2 is only needed for live mode
    from ..db.postgres import PostgresSessionStore, PostgresTradeStore, create_pool

    pool = create_pool(_resolve_dsn(cfg), maxconn=max_connections)
    try:
        yield PostgresTradeStore(pool), PostgresSessionStore(pool)
    finally:
        pool.closeall()


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env; override=True lets it win over variables already in the environment."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="trade_import", description="Trade export importer")
    p.add_argument("--config", type=Path, default=None, help=f"YAML config (default: {DEFAULT_CONFIG_PATH})")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    for name, help_text in (("preview", "Classify rows without importing"), ("import", "Import an export file")):
        sp = sub.add_parser(name, help=help_text)
        sp.add_argument("file", type=Path)
        sp.add_argument("--user", required=True, help="Owner of the imported trades")
        sp.add_argument("--account", required=True, help="Trading account the trades belong to")
        if name == "import":
            sp.add_argument("--no-progress", action="store_true", help="Disable the progress bar")

    hp = sub.add_parser("history", help="List recent import sessions")
    hp.add_argument("--user", required=True)
    hp.add_argument("--limit", type=int, default=10)

    dp = sub.add_parser("delete-session", help="Delete a finished import session")
    dp.add_argument("session_id")
    dp.add_argument("--user", required=True)
    dp.add_argument("--with-trades", action="store_true", help="Also delete the trades it imported")

    sub.add_parser("init-db", help="Create tables and indexes")
    return p.parse_args(argv)


def _load_cfg(path: Path | None, logger: logging.Logger) -> ImportConfig:
    if path is None:
        if not DEFAULT_CONFIG_PATH.exists():
            logger.debug("no %s, using defaults", DEFAULT_CONFIG_PATH)
            return ImportConfig()
        path = DEFAULT_CONFIG_PATH
    return load_config(path)


def _run_preview(pipeline: ImportPipeline, args: argparse.Namespace, logger: logging.Logger) -> int:
    start = time.perf_counter()
    result = pipeline.preview_import(args.file.read_bytes(), args.user, args.account, args.file.name)
    elapsed = time.perf_counter() - start
    for row in result.rows:
        if row.is_error:
            logger.warning("row=%d %s: %s", row.row_number, row.error_type, "; ".join(row.messages))
    logger.info(
        "preview total=%d valid=%d duplicates=%d errors=%d",
        result.total, result.valid, result.duplicates, result.errors,
    )
    log_summary(render_preview_line(result, elapsed)[len("SUMMARY "):])
    return EXIT_SUCCESS_ALL if result.errors == 0 else EXIT_PARTIAL_FAILURE


def _run_import(pipeline: ImportPipeline, args: argparse.Namespace, logger: logging.Logger) -> int:
    result = pipeline.execute_import(args.file.read_bytes(), args.user, args.account, args.file.name)
    for message in result.error_messages:
        logger.warning(message)
    logger.info("session=%s status=%s", result.session_id, result.status.value)
    # log_summary adds the "SUMMARY " prefix
    log_summary(render_summary_line(result)[len("SUMMARY "):])
    return EXIT_SUCCESS_ALL if result.status is ImportStatus.COMPLETED else EXIT_PARTIAL_FAILURE


def _run_history(pipeline: ImportPipeline, args: argparse.Namespace, logger: logging.Logger) -> int:
    sessions = pipeline.list_sessions(args.user, args.limit)
    if not sessions:
        logger.info("no import sessions for user=%s", args.user)
    for s in sessions:
        logger.info(
            "%s %s %s file=%s rows=%d imported=%d duplicates=%d errors=%d",
            s.started_at.isoformat(), s.id, s.status.value, s.file_name,
            s.total_rows, s.imported_rows, s.duplicate_rows, s.error_rows,
        )
    return EXIT_SUCCESS_ALL


def _run_delete(pipeline: ImportPipeline, args: argparse.Namespace, logger: logging.Logger) -> int:
    try:
        removed = pipeline.delete_session(args.session_id, args.user, delete_trades=args.with_trades)
    except SessionNotFound:
        logger.error("session not found: %s", args.session_id)
        return EXIT_FATAL
    except InvalidSessionTransition as e:
        logger.error("delete refused: %s", e)
        return EXIT_FATAL
    logger.info("deleted session=%s trades_removed=%d", args.session_id, removed)
    return EXIT_SUCCESS_ALL


def _run_init_db(cfg: ImportConfig, logger: logging.Logger) -> int:
    if os.getenv("DISABLE_DB_CONNECT") == "1":
        logger.info("DISABLE_DB_CONNECT=1: nothing to initialise")
        return EXIT_SUCCESS_ALL
    from ..db.postgres import apply_schema, create_pool

    pool = create_pool(_resolve_dsn(cfg))
    try:
        apply_schema(pool)
    finally:
        pool.closeall()
    logger.info("schema applied")
    return EXIT_SUCCESS_ALL


_COMMANDS = {
    "preview": _run_preview,
    "import": _run_import,
    "history": _run_history,
    "delete-session": _run_delete,
}


def main(argv: list[str] | None = None) -> int:
    # None のときのみ sys.argv を読む (テストから main([...]) で呼ぶため)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(debug=args.debug)
    _load_env_file(Path(".env"), override=True)

    try:
        cfg = _load_cfg(args.config, logger)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if args.command in ("preview", "import") and not args.file.is_file():
        logger.error(f"file not found: {args.file}")
        return EXIT_FATAL

    error_log = ErrorLogBuffer(cfg.logs_directory)
    try:
        if args.command == "init-db":
            return _run_init_db(cfg, logger)
        with _stores(cfg, max_connections=cfg.max_workers + 2) as (trades, sessions):
            pipeline = ImportPipeline(
                trades,
                sessions,
                cfg,
                error_log=error_log,
                show_progress=False if getattr(args, "no_progress", False) else None,
            )
            return _COMMANDS[args.command](pipeline, args, logger)
    except ConcurrencyConflict as e:
        logger.error(str(e))
        return EXIT_FATAL
    except InputFormatError as e:
        logger.error(f"input: {e}")
        return EXIT_FATAL
    except StoreError as e:
        logger.error(f"database: {e}")
        return EXIT_FATAL
    finally:
        path = error_log.flush()
        if path is not None:
            logger.info(f"row errors written to {path}")


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
