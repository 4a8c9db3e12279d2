"""Shared logging setup for the API process and the CLI.

SafeStreamHandler survives a closed stdout, which happens when the API is
reloaded while a generation pass is still running in a worker thread.
"""
import logging
import logging.handlers

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Chatty client libraries we only want to hear from on warnings
NOISY_LOGGERS = ("httpx", "httpcore", "openai", "aiohttp")


class SafeStreamHandler(logging.StreamHandler):
    """StreamHandler that ignores broken pipe and closed file errors."""

    def emit(self, record):
        try:
            super().emit(record)
        except BrokenPipeError:
            pass  # stdout closed
        except ValueError:
            pass  # I/O operation on closed file


def quiet_noisy_loggers(level=logging.WARNING) -> None:
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level)


def _has_handler(logger: logging.Logger, handler_type, **attrs) -> bool:
    return any(
        isinstance(h, handler_type) and all(getattr(h, k, None) == v for k, v in attrs.items())
        for h in logger.handlers
    )


def configure_safe_logging(level=logging.INFO) -> None:
    """Attach a SafeStreamHandler to the root logger.

    Safe to call repeatedly; a second call only adjusts the level.
    """
    root = logging.getLogger()
    if not _has_handler(root, SafeStreamHandler):
        handler = SafeStreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.setLevel(level)
        root.addHandler(handler)
    # The OpenAI SDK can leave the root logger at WARNING after import.
    if root.level == logging.NOTSET or root.level > level:
        root.setLevel(level)


def configure_api_logging(
    log_file: str,
    level=logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 3,
) -> None:
    """
    Root logging for the API: a rotating file plus the safe stream handler.

    The file keeps a record even when uvicorn's stdout pipe is gone. Repeated
    calls (reload loops) do not stack handlers.
    """
    root = logging.getLogger()
    root.setLevel(level)

    if not _has_handler(root, logging.handlers.RotatingFileHandler, baseFilename=log_file):
        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        file_handler.setLevel(level)
        root.addHandler(file_handler)

    configure_safe_logging(level)
    quiet_noisy_loggers()
