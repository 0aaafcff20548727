import json
import logging
import os
import sys
from datetime import date
from pathlib import Path

from loguru import logger

from notifier.utils.context import get_request_id

PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOGGING_CONFIG_PATH = PROJECT_ROOT / "logging_config.json"

# stdlib loggers that install their own handlers and must be rerouted explicitly
INTERCEPTED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi", "celery")


class InterceptHandler(logging.Handler):
    """Forward stdlib ``logging`` records (celery, uvicorn, httpx) into loguru."""

    def emit(self, record: logging.LogRecord):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.bind(request_id=get_request_id() or "app").opt(
            depth=depth, exception=record.exc_info
        ).log(level, record.getMessage())


def load_logging_section(config_path: Path, environment: str) -> dict:
    with open(config_path) as config_file:
        config = json.load(config_file)
    return config.get(environment, config["logger"])


def configure_logging(section: dict):
    """Replace loguru's default sink with the console + rotating file sinks."""
    level = os.getenv("LOG_LEVEL", section.get("level", "INFO")).upper()
    filename = f"{date.today():%Y-%m-%d}-{section.get('filename')}"

    logger.remove()
    logger.configure(extra={"request_id": "app"})
    logger.add(
        sys.stdout,
        enqueue=True,
        backtrace=True,
        level=level,
        format=section.get("console_format"),
        colorize=True,
    )

    file_sink_options = {
        "rotation": section.get("rotation"),
        "retention": section.get("retention"),
        "enqueue": True,
        "backtrace": True,
        "level": level,
        "colorize": False,
    }
    if section.get("use_json_logs") and section.get("file_format") == "json":
        file_sink_options["serialize"] = True
    else:
        file_sink_options["format"] = section.get("file_format")
    logger.add(
        str(PROJECT_ROOT / section.get("log_dir", "logs") / filename),
        **file_sink_options,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in INTERCEPTED_LOGGERS:
        logging.getLogger(name).handlers = [InterceptHandler()]

    return logger


custom_logger = configure_logging(
    load_logging_section(
        LOGGING_CONFIG_PATH,
        "production" if os.getenv("ENVIRONMENT") == "production" else "logger",
    )
)


def get_logger():
    """Get the custom logger instance with request ID binding."""
    return custom_logger.bind(request_id=get_request_id() or "app")
