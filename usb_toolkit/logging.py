from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

DEFAULT_LOG_DIR = Path(os.environ.get("USB_TOOLKIT_LOG_DIR", "/var/log/usb-toolkit"))


def _should_log_sysfs(record) -> bool:
    """Filter per-attribute sysfs reads - only show in TRACE mode."""
    tags = record["extra"].get("tags", [])
    # Attribute reads are TRACE-level only
    if "sysfs" in tags:
        return record["level"].no <= logger.level("TRACE").no
    return True


def _combined_filter(record) -> bool:
    return _should_log_sysfs(record)


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """
    Setup logging sinks for the toolkit.

    The interactive screen owns normal output, so the console sink is only
    added when --debug or --trace is given.

    Log Files:
    - operations.log: INFO+ events (7 day retention)
    - debug.log: DEBUG+ events when --debug is enabled (3 day retention)
    - structured.jsonl: Structured JSON logs for audit tooling (7 day retention)

    If the log directory cannot be created the file sinks are skipped; the
    toolkit keeps working without them.
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})

    if trace:
        level = "TRACE"
    elif debug:
        level = "DEBUG"
    else:
        level = "INFO"

    if debug or trace:
        logger.add(
            sys.stderr,
            level=level,
            backtrace=False,
            diagnose=False,
            filter=_combined_filter,
            colorize=True,
            format=(
                "<green>{time:HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{extra[source]: <10}</cyan> | "
                "<blue>{extra[job_id]: <18}</blue> | "
                "{message}"
            ),
        )

    log_dir = log_dir or DEFAULT_LOG_DIR
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(log_dir, 0o700)
    except OSError as error:
        print(
            f"  Note: cannot write to {log_dir} ({error.strerror}) - file logging disabled",
            file=sys.stderr,
        )
        return logger

    logger.add(
        log_dir / "operations.log",
        level="INFO",
        rotation="5 MB",
        retention="7 days",
        compression="zip",
        backtrace=False,
        diagnose=False,
        catch=True,
        format=(
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{extra[source]: <10} | "
            "{extra[job_id]: <18} | "
            "{message}"
        ),
    )

    if debug or trace:
        logger.add(
            log_dir / "debug.log",
            level=level,
            rotation="10 MB",
            retention="3 days",
            compression="zip",
            backtrace=True,
            diagnose=True,
            catch=True,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{extra[source]: <10} | "
                "{extra[job_id]: <18} | "
                "{extra[tags]} | "
                "{message}"
            ),
        )

    logger.add(
        log_dir / "structured.jsonl",
        level="INFO",
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        catch=True,
        serialize=True,
        format="{message}",
    )

    return logger


def get_logger(
    *,
    job_id: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """Get a logger with bound context."""
    extras: dict[str, object] = {}
    if job_id is not None:
        extras["job_id"] = job_id
    if tags is not None:
        extras["tags"] = list(tags)
    if source is not None:
        extras["source"] = source
    return logger.bind(**extras)


@contextmanager
def operation_context(operation: str, **details):
    """
    Context manager for tracking long-running operations with automatic timing.

    Logs operation start, completion and failure with duration.

    Example:
        with operation_context("wipe", device="/dev/sdb", mode="zero") as log:
            log.debug("Unmounting partitions")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        start_time = time.time()
        log = logger.bind(source=operation, job_id=job_id, tags=[operation])

        log.info(f"{operation.capitalize()} started", **details)

        try:
            yield log
            duration = time.time() - start_time
            log.success(
                f"{operation.capitalize()} completed", duration_seconds=round(duration, 2)
            )
        except BaseException as e:
            duration = time.time() - start_time
            log.error(
                f"{operation.capitalize()} failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=round(duration, 2),
            )
            raise


class LoggerFactory:
    """
    Factory for creating domain-specific loggers with automatic context.
    """

    @staticmethod
    def for_usb() -> Logger:
        """Logger for USB device detection."""
        return logger.bind(source="usb", tags=["usb", "hardware"])

    @staticmethod
    def for_sysfs() -> Logger:
        """Logger for raw sysfs attribute reads."""
        return logger.bind(source="sysfs", tags=["sysfs", "hardware"])

    @staticmethod
    def for_storage(job_id: str | None = None, **details) -> Logger:
        """Logger for block-device operations."""
        if job_id is None:
            job_id = f"storage-{uuid.uuid4().hex[:8]}"
        return logger.bind(
            job_id=job_id, source="storage", tags=["storage"], **details
        )

    @staticmethod
    def for_gate() -> Logger:
        """Logger for destructive-operation safety checks."""
        return logger.bind(source="gate", tags=["safety", "storage"])

    @staticmethod
    def for_policy() -> Logger:
        """Logger for USB storage policy changes."""
        return logger.bind(source="policy", tags=["policy", "security"])

    @staticmethod
    def for_menu() -> Logger:
        """Logger for menu navigation."""
        return logger.bind(source="menu", tags=["ui", "menu"])

    @staticmethod
    def for_system() -> Logger:
        """Logger for startup, shutdown, locking and config."""
        return logger.bind(source="system", tags=["system"])


class EventRecorder:
    """
    Audit trail collaborator for operations that change devices or policy.

    ``record`` never raises: a broken sink is reported on stderr once and the
    calling operation carries on.
    """

    def __init__(self, log: Logger | None = None):
        self.log = log or logger.bind(source="audit", tags=["audit"])
        self.failed = False

    def record(self, event: str, **fields) -> None:
        try:
            self.log.info(event.upper(), event_type=event, **fields)
        except Exception as error:  # noqa: BLE001 - audit must not abort callers
            if not self.failed:
                print(f"  Note: audit logging failed: {error}", file=sys.stderr)
            self.failed = True


recorder = EventRecorder()
