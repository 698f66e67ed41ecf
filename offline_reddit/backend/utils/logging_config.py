"""structlog setup for the API server and the sync CLI.

Both entry points log through stdlib handlers with a JSON formatter: a DEBUG
file under ``logs/`` and a stdout echo whose level the caller picks (the CLI
raises it to WARNING so its own summary stays readable).

    >>> setup_logging(log_filename="offline_reddit.log")
    >>> get_logger(__name__).info("feed_sync_started", feed="askreddit", post_limit=10)
"""

import logging
import sys
from pathlib import Path

import structlog


def setup_logging(
    log_dir: str = "logs",
    log_filename: str = "offline_reddit.log",
    console_level: int = logging.INFO
) -> None:
    """Route structlog and stdlib logging to a JSON log file and stdout.

    Replaces any handlers already on the root logger, so calling it twice
    (tests, app reload) does not duplicate output.

    Args:
        log_dir: Created if missing
        log_filename: File inside log_dir that receives every entry
        console_level: Minimum level echoed to stdout

    Each line is one JSON object with ``event``, ``level``, ``logger``,
    an ISO UTC ``timestamp`` and the keyword context of the call; errors
    logged with ``exc_info=True`` carry the formatted traceback.
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    shared_processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
        structlog.processors.StackInfoRenderer(),
    ]

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Records from plain stdlib loggers (uvicorn, requests) go through foreign_pre_chain
    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
        foreign_pre_chain=shared_processors,
    )

    file_handler = logging.FileHandler(str(log_path / log_filename), encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)


def get_logger(name: str = None):
    """structlog logger bound to ``name`` (the root logger when None)."""
    return structlog.get_logger(name)
