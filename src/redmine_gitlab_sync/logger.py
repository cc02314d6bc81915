import json
import logging
import os
import sys

DEFAULT_LOG_FILE = "/tmp/redmine-gitlab-sync.log"
_TEXT_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """Single-line JSON formatter for structured output.

    Produces one JSON object per log record with fields: ts, level, logger,
    thread, msg.  Exception info is included as an "exc" field when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _formatter(debug_format: str) -> logging.Formatter:
    if debug_format == "json":
        return JsonFormatter(datefmt=_DATE_FORMAT)
    return logging.Formatter(_TEXT_FORMAT, datefmt=_DATE_FORMAT)


def setup_logging(
    mode: str = "cli",
    debug: bool = False,
    log_file: str | None = None,
    debug_format: str = "text",
) -> None:
    """
    Configure logging based on execution mode.

    Args:
        mode: "mcp" for file logging (never stdout), "cli" for stderr logging.
        debug: If True, overrides LOG_LEVEL to DEBUG.
        log_file: Custom log file path (overrides LOG_FILE env var).
        debug_format: "text" (default) or "json" for structured output.

    Environment variables:
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR).
                   Default: INFO.  Worker threads log every reconciliation
                   at INFO, which is the operational record of the engine.
        LOG_FILE: Custom log file path for MCP mode.
                  Default: /tmp/redmine-gitlab-sync.log
    """
    env_level = os.getenv("LOG_LEVEL", "INFO").upper()
    if debug:
        log_level = logging.DEBUG
    else:
        log_level = getattr(logging, env_level, logging.INFO)

    handlers: list[logging.Handler] = []
    if mode == "mcp":
        # stdio transport owns stdout, so MCP mode logs to a file only
        final_log_file = log_file or os.getenv("LOG_FILE", DEFAULT_LOG_FILE)
        file_handler = logging.FileHandler(final_log_file, mode="a")
        file_handler.setFormatter(_formatter(debug_format))
        handlers.append(file_handler)
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(_formatter(debug_format))
        handlers.append(stderr_handler)
        if log_file:
            file_handler = logging.FileHandler(log_file, mode="a")
            file_handler.setFormatter(_formatter(debug_format))
            handlers.append(file_handler)

    logging.basicConfig(level=log_level, handlers=handlers)

    # Silence third-party libs unless DEBUG
    if log_level != logging.DEBUG:
        logging.getLogger("urllib3").setLevel(logging.WARNING)
        logging.getLogger("requests").setLevel(logging.WARNING)
