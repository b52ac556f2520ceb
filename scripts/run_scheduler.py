"""
Run one pipeline task (or all of them) outside the API process.

    python -m scripts.run_scheduler --task csv-import
    python -m scripts.run_scheduler --task all --once
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import threading
from dataclasses import asdict, is_dataclass

from app.scheduler.jobs import TASK_IDS, build_scheduler_manager

logger = logging.getLogger("scripts.run_scheduler")


def _configure_logging() -> None:
    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _jsonable(value):
    if is_dataclass(value):
        return asdict(value)
    return value


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run chat pipeline scheduler tasks.")
    parser.add_argument(
        "--task",
        dest="task",
        default="all",
        choices=[*TASK_IDS, "all"],
        help="Task id to host, or 'all'.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Trigger the selected task(s) once and exit instead of scheduling.",
    )
    args = parser.parse_args(argv)
    _configure_logging()

    task_ids = TASK_IDS if args.task == "all" else (args.task,)
    try:
        manager = build_scheduler_manager(task_ids=task_ids)
    except Exception:  # noqa: BLE001
        logger.exception("Scheduler runner failed to initialize task=%s", args.task)
        return 1

    if args.once:
        exit_code = 0
        for task_id in manager.task_ids():
            outcome = manager.trigger(task_id)
            print(
                json.dumps(
                    {
                        "task_id": outcome.task_id,
                        "success": outcome.success,
                        "duration_seconds": round(outcome.duration_seconds, 3),
                        "result": _jsonable(outcome.result),
                        "error": outcome.error,
                    },
                    indent=2,
                    default=str,
                )
            )
            if not outcome.success:
                exit_code = 1
        return exit_code

    if not manager.enabled:
        logger.error("Scheduler is disabled (SCHEDULER_ENABLED=false); nothing to run")
        return 1

    shutdown = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("Scheduler runner received signal=%s, shutting down", signum)
        shutdown.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    manager.start_all()
    health = manager.get_health_status()
    if health.running_tasks == 0:
        logger.error("Scheduler runner started no tasks task=%s", args.task)
        manager.stop_all()
        return 1

    logger.info("Scheduler runner started tasks=%s", ",".join(manager.task_ids()))
    try:
        while not shutdown.wait(timeout=1.0):
            pass
    finally:
        manager.stop_all()
    logger.info("Scheduler runner stopped")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
