from datetime import datetime
from pytz import timezone
import logging.config
import logging
import os


debug_mode = os.getenv("LOG_LEVEL", "info").lower() == "debug"
loglevel = logging.DEBUG if debug_mode else logging.INFO

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_ANSI_RESET = "\033[0m"
_ANSI_COLORS = {"red": 31, "green": 32, "yellow": 33, "blue": 34, "magenta": 35, "cyan": 36, "white": 37}
_LEVEL_MARKERS = {logging.WARNING: "⚠️ ", logging.ERROR: "⛔ ", logging.CRITICAL: "⛔ "}

# chatty on INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite", "sqlalchemy.engine", "pypdf")


class CompassFormatter(logging.Formatter):
    """Formats timestamps in the configured timezone and marks warnings and errors.

    With ``colored`` set, a ``color`` attribute on the record (see :class:`CompassLogger`)
    wraps the whole line in the matching ANSI sequence.
    """

    def __init__(self, tz_name: str, colored: bool = False, **kwargs):
        super().__init__(**kwargs)
        self.tz = timezone(tz_name)
        self.colored = colored

    def formatTime(self, record, datefmt=None):
        stamp = datetime.fromtimestamp(record.created, self.tz)
        return stamp.strftime(datefmt) if datefmt else stamp.isoformat()

    def formatMessage(self, record):
        record.message = _LEVEL_MARKERS.get(record.levelno, "") + record.message
        return super().formatMessage(record)

    def format(self, record):
        line = super().format(record)
        code = _ANSI_COLORS.get(getattr(record, "color", None) or "")
        if self.colored and code:
            return f"\033[{code}m{line}{_ANSI_RESET}"
        return line


class CompassLogger(logging.LoggerAdapter):
    """Application logger accepting an optional ``color=`` keyword on every call.

        logger.info("Indexed '%s' v%d", source, version, color="green")
    """

    def process(self, msg, kwargs):
        color = kwargs.pop("color", None)
        if color is not None:
            kwargs["extra"] = {**(kwargs.get("extra") or {}), "color": color}
        return msg, kwargs


def _formatter(tz_name: str, colored: bool) -> dict:
    return {"()": CompassFormatter, "fmt": LOG_FORMAT, "datefmt": DATE_FORMAT, "tz_name": tz_name, "colored": colored}


def setup_logging(name: str = "compass") -> CompassLogger:
    """Configure console and file logging for the process and return the application logger.

    Environment:
        ROOT_DIR: base directory for ``logs/app.log`` (defaults to the working directory).
        TIMEZONE: timezone used for timestamps (defaults to Europe/Berlin).
        LOG_LEVEL: "debug" enables debug output including HTTP traffic.
        LOG_TO_FILE: "false" disables the file handler.
    """
    tz_name = os.getenv("TIMEZONE", "Europe/Berlin")

    handlers: dict = {
        "console": {"class": "logging.StreamHandler", "formatter": "console", "level": loglevel, "stream": "ext://sys.stdout"},
    }
    if os.getenv("LOG_TO_FILE", "true").lower() in ("true", "1", "yes"):
        log_dir = os.path.join(os.getenv("ROOT_DIR") or os.getcwd(), "logs")
        os.makedirs(log_dir, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "formatter": "file",
            "level": loglevel,
            "filename": os.path.join(log_dir, "app.log"),
            "encoding": "utf-8",
        }

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"console": _formatter(tz_name, colored=True), "file": _formatter(tz_name, colored=False)},
        "handlers": handlers,
        "root": {"handlers": list(handlers), "level": loglevel},
    })

    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.DEBUG if debug_mode else logging.WARNING)

    return CompassLogger(logging.getLogger(name), {})
