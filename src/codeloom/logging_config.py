"""Process-wide logging for the codeloom CLI.

``setup_logging()`` runs at CLI import time, before litellm is imported,
so ``LITELLM_LOG`` is in place when litellm builds its handlers.
``cleanup_third_party_handlers()`` runs once every import is done and
strips the handlers litellm attached. ``apply_settings_levels()`` runs
after settings load and may give the background sync and governor
loggers their own level, so ``codeloom watch`` stays readable while
queries log normally.
"""

import logging
import os

# Watchdog callbacks log from the observer thread, sync workers from the loop.
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s:%(threadName)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S"

_LITELLM_LOGGERS = ("LiteLLM", "LiteLLM Router", "LiteLLM Proxy")

# Chatty at INFO while indexing or embedding
_SUPPRESSED_LOGGERS = (
    *_LITELLM_LOGGERS,
    "openai._base_client",
    "httpx",
    "watchdog",
    "aiosqlite",
    "sqlalchemy.engine",
    "lancedb",
)

# One line per deferred unit or load transition under ``watch``
BACKGROUND_LOGGERS = ("codeloom.sync", "codeloom.governor")

_phase1_done = False
_phase2_done = False


def _level(name: str) -> int:
    value = logging.getLevelName(name.upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {name}")
    return value


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger and quiet third-party loggers.

    Idempotent; only the first call has any effect.
    """
    global _phase1_done  # noqa: PLW0603
    if _phase1_done:
        return
    _phase1_done = True

    # litellm._logging reads this at import time to set handler level.
    os.environ.setdefault("LITELLM_LOG", "WARNING")

    logging.basicConfig(
        level=_level(level),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )

    for name in _SUPPRESSED_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def cleanup_third_party_handlers() -> None:
    """Drop litellm's own StreamHandlers so records reach root only once."""
    global _phase2_done  # noqa: PLW0603
    if _phase2_done:
        return
    _phase2_done = True

    for name in _LITELLM_LOGGERS:
        lg = logging.getLogger(name)
        lg.handlers.clear()
        lg.propagate = True


def apply_settings_levels(
    level: str, background_level: str | None = None
) -> None:
    """Set the root level and, optionally, the background loggers' level.

    With ``background_level`` unset the sync and governor loggers inherit
    from root again.
    """
    logging.getLogger().setLevel(_level(level))
    background = logging.NOTSET if background_level is None else _level(
        background_level
    )
    for name in BACKGROUND_LOGGERS:
        logging.getLogger(name).setLevel(background)
