"""CLI entrypoint: python -m insights {run|collect|process|cleanup|health|init-db|stats|serve|schedule}."""

from __future__ import annotations

import asyncio
import logging
import logging.handlers
import os
import sys
from pathlib import Path

from insights.config import get_api_config, get_db_path, get_pipeline_settings, load_config
from insights.db import get_connection, init_db


def setup_logging(config: dict) -> None:
    """Configure logging with console + rotating file output."""
    root = logging.getLogger()
    root.setLevel(logging.INFO)

    fmt = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler()
    console.setFormatter(fmt)
    root.addHandler(console)

    # File handler next to the database (rotate at 5MB, keep 3 backups)
    log_dir = Path(get_db_path(config)).parent
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = logging.handlers.RotatingFileHandler(
        str(log_dir / "insights.log"), maxBytes=5 * 1024 * 1024, backupCount=3,
    )
    file_handler.setFormatter(fmt)
    root.addHandler(file_handler)

    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


logger = logging.getLogger("insights")


def _prepare_db(config: dict, reconcile: bool = False) -> None:
    db_path = get_db_path(config)
    init_db(db_path)
    if reconcile and get_pipeline_settings(config)["reset_stale_on_startup"]:
        from insights.pipeline import reconcile_stale

        conn = get_connection(db_path)
        try:
            reconcile_stale(conn)
        finally:
            conn.close()


def cmd_init_db(config: dict) -> None:
    """Initialize the SQLite database."""
    db_path = get_db_path(config)
    init_db(db_path)
    print(f"Database initialized at {db_path}")


async def cmd_run(config: dict) -> None:
    """Run the full pipeline once."""
    from insights.pipeline import run_pipeline

    _prepare_db(config, reconcile=True)
    run = await run_pipeline(config)
    print(
        f"Collected {run.collected}, processed {run.processed}, "
        f"retried {run.retried}, expired {run.expired} in {run.execution_time_ms}ms"
    )
    if not run.success:
        print(f"Pipeline failed: {run.error}")
        sys.exit(1)


async def cmd_collect(config: dict) -> None:
    """Collect new articles without classifying them."""
    from insights.pipeline import collect_only

    _prepare_db(config)
    collected = await collect_only(config)
    print(f"Collected {collected} new articles")


async def cmd_process(config: dict) -> None:
    """Classify pending articles only."""
    from insights.pipeline import process_only

    _prepare_db(config, reconcile=True)
    processed = await process_only(config)
    print(f"Processed {processed} articles")


def cmd_cleanup(config: dict) -> None:
    """Run the full retention sweep."""
    from insights.retention import run_daily_cleanup

    _prepare_db(config)
    removed = run_daily_cleanup(config)
    for name, count in removed.items():
        print(f"  {name}: {count} removed")


def cmd_health(config: dict) -> None:
    """Exit non-zero when articles are sitting in FAILED."""
    from insights.retention import health_check

    _prepare_db(config)
    if health_check(config):
        print("OK")
    else:
        print("Failed articles present, check logs")
        sys.exit(1)


def cmd_stats(config: dict) -> None:
    """Show article, insight and run statistics."""
    from insights.query import system_stats

    _prepare_db(config)
    conn = get_connection(get_db_path(config))
    try:
        print(system_stats(conn))
    finally:
        conn.close()


def cmd_serve(config: dict) -> None:
    """Serve the HTTP API (and the scheduler, unless disabled in config)."""
    import uvicorn

    from insights.api import create_app

    api_cfg = get_api_config(config)
    uvicorn.run(create_app(config), host=api_cfg["host"], port=api_cfg["port"])


async def cmd_schedule(config: dict) -> None:
    """Run the scheduler without the HTTP API until interrupted."""
    from insights.scheduler import PipelineScheduler

    _prepare_db(config, reconcile=True)
    scheduler = PipelineScheduler(config)
    scheduler.start()
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown()


COMMANDS = {
    "run": cmd_run,
    "collect": cmd_collect,
    "process": cmd_process,
    "cleanup": cmd_cleanup,
    "health": cmd_health,
    "init-db": cmd_init_db,
    "stats": cmd_stats,
    "serve": cmd_serve,
    "schedule": cmd_schedule,
}


def main() -> None:
    if len(sys.argv) < 2 or sys.argv[1] not in COMMANDS:
        available = ", ".join(COMMANDS)
        print(f"Usage: python -m insights {{{available}}}")
        sys.exit(1)

    command = sys.argv[1]
    config = load_config(os.environ.get("CONFIG_PATH", "config.yaml"))
    setup_logging(config)
    handler = COMMANDS[command]

    if asyncio.iscoroutinefunction(handler):
        try:
            asyncio.run(handler(config))
        except KeyboardInterrupt:
            logger.info("Interrupted")
    else:
        handler(config)


if __name__ == "__main__":
    main()
