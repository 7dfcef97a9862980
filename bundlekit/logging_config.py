from __future__ import annotations

"""Central logging configuration for bundlekit.

Import and call :func:`setup_logging` at application start-up.
"""

import copy
import logging
import logging.config
import os

from bundlekit.config import ConfigManager

__all__ = ["setup_logging"]

_DEBUG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging() -> None:
    """Configure logging for the application using configuration from YAML files.

    A ``bundlekit.log`` file handler is added when ``BUNDLEKIT_LOG_DIR`` is set.
    """
    log_dir = os.environ.get("BUNDLEKIT_LOG_DIR")
    log_file = os.path.join(log_dir, "bundlekit.log") if log_dir else None

    try:
        logging_config = copy.deepcopy(ConfigManager().get_logging_config())

        if logging_config and isinstance(logging_config, dict) and logging_config.get("version"):
            if log_file:
                os.makedirs(log_dir, exist_ok=True)
                _add_file_handler(logging_config, log_file)
            logging.config.dictConfig(logging_config)
            logging.getLogger(__name__).debug("Logging initialised from config files")
        else:
            _setup_minimal_logging()
    except (ValueError, TypeError, AttributeError, ImportError, OSError) as exc:
        print(f"Error loading logging config: {exc}")
        _setup_minimal_logging()

    _apply_debug_overrides()


def _add_file_handler(logging_config: dict, log_file: str) -> None:
    handlers = logging_config.setdefault("handlers", {})
    file_handler = {
        "class": "logging.FileHandler",
        "level": "DEBUG",
        "filename": log_file,
        "encoding": "utf-8",
    }
    if "detailed" in logging_config.get("formatters", {}):
        file_handler["formatter"] = "detailed"
    handlers["file"] = file_handler
    for section in [logging_config.get("root", {})] + list(logging_config.get("loggers", {}).values()):
        section.setdefault("handlers", []).append("file")


def _setup_minimal_logging() -> None:
    """Set up minimal console-only logging when config is unavailable."""
    minimal_config = {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'simple': {
                'format': '%(levelname)s %(name)s: %(message)s',
            },
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'formatter': 'simple',
                'level': 'WARNING',
            },
        },
        'root': {
            'level': 'WARNING',
            'handlers': ['console'],
        },
    }

    logging.config.dictConfig(minimal_config)
    logging.getLogger(__name__).warning("Logging initialised with minimal fallback (config error)")


def _apply_debug_overrides() -> None:
    """Apply environment-driven module-specific debug overrides.

    ``BUNDLEKIT_DEBUG_MODULES=comma,separated,logger,names`` sets DEBUG on the
    listed loggers.
    """
    extra_modules = os.environ.get('BUNDLEKIT_DEBUG_MODULES', '').strip()
    targets = [m.strip() for m in extra_modules.split(',') if m.strip()]
    for name in targets:
        logger = logging.getLogger(name)
        logger.setLevel(logging.DEBUG)
        # Ensure at least one handler emits DEBUG for this logger
        has_debug_handler = any(
            h.level == logging.NOTSET or h.level <= logging.DEBUG for h in logger.handlers
        )
        if not has_debug_handler:
            h = logging.StreamHandler()
            h.setLevel(logging.DEBUG)
            h.setFormatter(logging.Formatter(_DEBUG_FORMAT))
            logger.addHandler(h)
        logger.info("Debug override active for logger '%s'", name)
