import datetime as dt
import json
import copy
import logging
import logging.config
import logging.handlers
import queue
import atexit
from pathlib import Path

# attributes every LogRecord carries; anything else came in through extra=
LOG_RECORD_BUILTIN_ATTRS = {
    "args",
    "asctime",
    "created",
    "exc_info",
    "exc_text",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "msg",
    "name",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "thread",
    "threadName",
    "taskName",
}


class JSONLogFormatter(logging.Formatter):
    # fmt_keys maps output key -> LogRecord attribute
    def __init__(
        self,
        *,
        fmt_keys: dict[str, str] | None = None,
    ):
        super().__init__()
        self.fmt_keys = fmt_keys if fmt_keys is not None else {}

    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(self._record_to_dict(record), default=str)

    def _record_to_dict(self, record: logging.LogRecord) -> dict:
        computed = {
            "message": record.getMessage(),
            "timestamp": dt.datetime.fromtimestamp(
                record.created, tz=dt.timezone.utc
            ).isoformat(),
        }
        if record.exc_info is not None:
            computed["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info is not None:
            computed["stack_info"] = self.formatStack(record.stack_info)

        entry = {}
        for key, attr in self.fmt_keys.items():
            if attr in computed:
                entry[key] = computed.pop(attr)
            else:
                entry[key] = getattr(record, attr, None)
        entry.update(computed)

        # peer address, piece index and the like arrive via extra={...}
        for key, val in record.__dict__.items():
            if key not in LOG_RECORD_BUILTIN_ATTRS:
                entry[key] = val

        return entry


LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {
            "format": "[%(levelname)s|%(module)s|L%(lineno)d] %(asctime)s: %(message)s",
            "datefmt": "%Y-%m-%dT%H:%M:%S%z",
        },
        "json": {
            "()": JSONLogFormatter,
            "fmt_keys": {
                "level": "levelname",
                "message": "message",
                "timestamp": "timestamp",
                "logger": "name",
                "module": "module",
                "function": "funcName",
                "line": "lineno",
                "task": "taskName",
            },
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "level": "WARNING",
            "formatter": "simple",
            "stream": "ext://sys.stderr",
        },
        "file_json": {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "DEBUG",
            "formatter": "json",
            "filename": "default",
            "maxBytes": 5000000,
            "backupCount": 5,
        },
    },
    "loggers": {
        "root": {"level": "DEBUG", "handlers": ["console", "file_json"]},
    },
}


def config_logging(file_name: str, verbose: bool = False, log_dir: Path | None = None):
    """Route all records through a queue to the console and a JSON-lines file.

    The console only shows warnings unless ``verbose`` is set, the file
    always receives everything down to DEBUG.
    """
    log_path = (log_dir or Path("data") / "logs") / file_name
    log_path.parent.mkdir(parents=True, exist_ok=True)

    d_config = copy.deepcopy(LOGGING_CONFIG)
    d_config["handlers"]["file_json"]["filename"] = str(log_path)
    if verbose:
        d_config["handlers"]["console"]["level"] = "INFO"

    logging.config.dictConfig(d_config)

    # handlers run on the listener thread, callers only enqueue
    root = logging.getLogger()
    handlers = list(root.handlers)
    log_queue = queue.SimpleQueue()
    listener = logging.handlers.QueueListener(
        log_queue, *handlers, respect_handler_level=True
    )
    for handler in handlers:
        root.removeHandler(handler)
    root.addHandler(logging.handlers.QueueHandler(log_queue))
    listener.start()
    atexit.register(listener.stop)
    return listener
