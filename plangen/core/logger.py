"""Logger configuration for plangen.

Log calls pass structured fields as keyword arguments. While a job runs, the
dispatcher wraps it in `job_log_context`, so every line emitted by the pipeline,
the parser and the aggregator carries the job id, kind and subject.
"""

import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from loguru import logger

_CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan>{job} - <level>{message}</level> {extra}\n{exception}"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line}{job} - {message} | {extra}\n{exception}"


def _with_job_tag(template: str, colorize: bool):
    def formatter(record) -> str:
        job = ""
        if "job_id" in record["extra"]:
            job = " <magenta>[job {extra[job_id]}]</magenta>" if colorize else " [job {extra[job_id]}]"
        return template.replace("{job}", job)

    return formatter


console_format = _with_job_tag(_CONSOLE_FORMAT, colorize=True)
file_format = _with_job_tag(_FILE_FORMAT, colorize=False)


def setup_logger(
    level: str = "INFO",
    log_file: str | None = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
) -> None:
    """Configure loguru logger with console and optional file output.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file. If None, only console logging.
        rotation: Log rotation size (e.g., "10 MB", "1 day")
        retention: Log retention period (e.g., "7 days", "1 month")
    """
    logger.remove()

    logger.add(sys.stderr, format=console_format, level=level, colorize=True)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            log_path,
            format=file_format,
            level=level,
            rotation=rotation,
            retention=retention,
            compression="zip",
            backtrace=True,
            diagnose=True,
        )

    logger.debug(f"Logger initialized with level={level}")


@contextmanager
def job_log_context(job_id: int, kind: str, subject: str) -> Iterator[None]:
    """Attach job fields to every log record emitted inside the block.

    Uses contextvars, so the fields follow awaits and `asyncio.to_thread` calls
    made from the block.
    """
    with logger.contextualize(job_id=job_id, job_kind=kind, subject=subject):
        yield
