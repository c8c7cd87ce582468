import logging
import logging.config
import os
from datetime import datetime

from pytz import timezone

debug_mode = os.getenv("LOG_LEVEL", "info").lower() == "debug"
loglevel = logging.DEBUG if debug_mode else logging.INFO

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILENAME = "docintel.log"

# client libraries that only log at WARNING and above unless LOG_LEVEL=debug
NOISY_LOGGERS = ("httpx", "httpcore", "neo4j", "botocore", "boto3", "pypdf")

LEVEL_PREFIXES = {
    logging.CRITICAL: "🛑 ",
    logging.ERROR: "⛔ ",
    logging.WARNING: "⚠️ ",
}

ANSI_RESET = "\033[0m"
ANSI_COLORS = {
    "cyan": "\033[36m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "red": "\033[31m",
    "magenta": "\033[35m",
    "blue": "\033[34m",
    "white": "\033[37m",
}


class PdfParserNoiseFilter(logging.Filter):
    """Drop the recoverable parser chatter pypdf emits for slightly broken PDFs."""

    NOISE = ("Ignoring wrong pointing object", "Multiple definitions in dictionary", "incorrect startxref pointer")

    def filter(self, record: logging.LogRecord) -> bool:
        if not record.name.startswith("pypdf"):
            return True
        message = str(record.msg)
        return not any(marker in message for marker in self.NOISE)


class CustomFormatter(logging.Formatter):
    """Timestamps in a fixed timezone and an emoji marker for warnings and errors."""

    def __init__(self, tz_name: str, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.tz = timezone(tz_name)

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, self.tz)
        return dt.strftime(datefmt) if datefmt else dt.isoformat()

    def format(self, record: logging.LogRecord) -> str:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            # broken format strings from third-party libraries are dropped
            return ""

        # every handler formats the same record, work on a copy
        prefixed = logging.makeLogRecord(record.__dict__)
        prefixed.msg = LEVEL_PREFIXES.get(record.levelno, "") + message
        prefixed.args = ()
        return super().format(prefixed)


class ColoredFormatter(CustomFormatter):
    """Console formatter, wraps a line in ANSI codes when the record carries a ``color`` attribute."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        ansi = ANSI_COLORS.get(getattr(record, "color", None) or "")
        if not line or not ansi:
            return line
        return f"{ansi}{line}{ANSI_RESET}"


class ColorLogger(logging.LoggerAdapter):
    """Logger adapter accepting an optional ``color=`` keyword on every log call.

    Usage::

        logger.info("Document %s completed.", doc_id)
        logger.info("Server ready", color="green")

    The color only reaches the console handler, the log file stays plain text.
    """

    def __init__(self, logger: logging.Logger):
        super().__init__(logger, {})

    def process(self, msg, kwargs):
        color = kwargs.pop("color", None)
        if color is not None:
            kwargs["extra"] = {**(kwargs.get("extra") or {}), "color": color}
        return msg, kwargs


def _formatter(formatter_class: type[CustomFormatter], tz_name: str) -> dict:
    return {"()": formatter_class, "format": LOG_FORMAT, "datefmt": DATE_FORMAT, "tz_name": tz_name}


def build_logging_config(log_dir: str, tz_name: str) -> dict:
    """dictConfig for a colored console handler and a UTF-8 file handler below log_dir."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": _formatter(CustomFormatter, tz_name),
            "colored": _formatter(ColoredFormatter, tz_name),
        },
        "filters": {
            "pdf_noise": {"()": PdfParserNoiseFilter},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "colored",
                "filters": ["pdf_noise"],
                "level": loglevel,
                "stream": "ext://sys.stdout",
            },
            "file": {
                "class": "logging.FileHandler",
                "formatter": "standard",
                "filters": ["pdf_noise"],
                "level": loglevel,
                "filename": os.path.join(log_dir, LOG_FILENAME),
                "encoding": "utf-8",
            },
        },
        "root": {"handlers": ["console", "file"], "level": loglevel},
    }


def setup_logging() -> ColorLogger:
    """Configure root logging for the API server and the CLI runner.

    Log files go to $ROOT_DIR/logs (working directory when ROOT_DIR is unset), timestamps
    use $TIMEZONE.
    """
    log_dir = os.path.join(os.getenv("ROOT_DIR", os.getcwd()), "logs")
    os.makedirs(log_dir, exist_ok=True)

    logging.config.dictConfig(build_logging_config(log_dir, os.getenv("TIMEZONE", "Europe/Berlin")))
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if debug_mode else logging.WARNING)

    return ColorLogger(logging.getLogger("docintel"))
