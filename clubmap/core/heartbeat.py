"""
Heartbeat loop that keeps reconciliation sweeps running on an interval.

Used by ``scripts/reconcile.py --loop``. Tasks live in a module-level
registry; a failing sweep is logged and retried after its interval.
"""

import threading
import time
from typing import Callable, Dict

from .config import is_reconcile_enabled, validate_config
from util.logging import logger


tasks: Dict[str, Dict] = {}  # name -> {func, interval, last_run}
running = False
shutdown_event = None


def register_task(name: str, interval_sec: int, func: Callable):
    """Schedule ``func`` every ``interval_sec`` seconds. Re-registering a name replaces it."""
    if not callable(func):
        raise ValueError(f"Task function must be callable: {func}")
    if interval_sec < 1:
        raise ValueError(f"Interval must be >= 1 second: {interval_sec}")

    issues = validate_config()
    if issues:
        raise ValueError(f"Configuration invalid: {issues}")

    tasks[name] = {"func": func, "interval": interval_sec, "last_run": None}
    logger.info(f"Scheduled '{name}' every {interval_sec}s")


def start(max_cycles: int = None):
    """
    Run due tasks until stop() is called.

    Does nothing when RECONCILE_ENABLED is false.

    Args:
        max_cycles: Return after this many cycles (None runs until stop()).
    """
    global running, shutdown_event

    if not is_reconcile_enabled():
        logger.info("Reconciliation loop disabled (RECONCILE_ENABLED=false)")
        return
    if running:
        raise RuntimeError("Heartbeat already running")

    running = True
    shutdown_event = threading.Event()
    cycles = 0
    logger.info(f"Reconciliation loop started: {sorted(tasks)}")

    try:
        while running and not shutdown_event.is_set():
            for name, task in list(tasks.items()):
                if not _is_due(task):
                    continue
                try:
                    _run(name, task)
                except Exception as e:
                    logger.error(f"Scheduled task '{name}' failed: {e}")

            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            shutdown_event.wait(0.1)
    except KeyboardInterrupt:
        logger.info("Reconciliation loop interrupted")
    finally:
        running = False
        logger.info("Reconciliation loop stopped")


def stop():
    global running

    if not running:
        return
    running = False
    if shutdown_event:
        shutdown_event.set()


def _is_due(task: Dict) -> bool:
    if task["last_run"] is None:
        return True
    return time.monotonic() - task["last_run"] >= task["interval"]


def _run(name: str, task: Dict):
    # last_run is set even on failure so a broken sweep waits a full interval
    began = time.monotonic()
    try:
        task["func"]()
    finally:
        task["last_run"] = time.monotonic()
    logger.debug(f"Scheduled task '{name}' finished in {task['last_run'] - began:.2f}s")
