import logging
from typing import Optional, Union

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Chatty third-party loggers that drown out tick summaries at INFO
_QUIET_LOGGERS = ("aiohttp.access", "uvicorn.access")


def resolve_level(level: Union[int, str, None], default: int = logging.INFO) -> int:
    if isinstance(level, int):
        return level
    if not level:
        return default
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else default


def setup_logging(level: Union[int, str, None] = logging.INFO, log_format: Optional[str] = None) -> None:
    """
    Configure process-wide logging with a consistent format.

    Intended to be called once from the entrypoint. Safe to call multiple
    times; subsequent calls are ignored if handlers exist.
    """
    if logging.getLogger().handlers:
        return

    logging.basicConfig(level=resolve_level(level), format=log_format or DEFAULT_FORMAT)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
