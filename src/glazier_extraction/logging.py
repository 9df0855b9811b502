import logging
import os
from typing import List, Optional


_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}

# Quiet unless the run is verbose; the final report is the only stdout output.
_DEFAULT_LEVEL = logging.ERROR

_CONFIGURED: List[logging.Logger] = []


def _coerce_level(value: Optional[str]) -> int:
    if isinstance(value, str):
        return _LEVELS.get(value.upper().strip(), _DEFAULT_LEVEL)
    if isinstance(value, int):
        return value
    return _DEFAULT_LEVEL


def _env_level() -> Optional[int]:
    raw = os.environ.get("LOG_LEVEL")
    if raw and raw.strip():
        return _coerce_level(raw)
    return None


def _apply_level(logger: logging.Logger, level: int) -> None:
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)


def get_logger(name: str) -> logging.Logger:
    """Return a configured stderr logger with consistent formatting.

    - Honors LOG_LEVEL (default ERROR) and LOG_FILE (optional path).
    - Writes to stderr so stdout stays reserved for the JSON report.
    """
    logger = logging.getLogger(name)
    if getattr(logger, "_glazier_configured", False):
        return logger

    level = _env_level()
    if level is None:
        level = _DEFAULT_LEVEL
    logger.setLevel(level)

    fmt = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    formatter = logging.Formatter(fmt=fmt, datefmt=datefmt)

    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(formatter)
    logger.addHandler(sh)

    # Optional log file (appends)
    log_file = os.environ.get("LOG_FILE")
    if log_file:
        try:
            fh = logging.FileHandler(log_file, encoding="utf-8")
            fh.setLevel(level)
            fh.setFormatter(formatter)
            logger.addHandler(fh)
        except OSError:
            logger.warning("LOG_FILE could not be opened; continuing without file logging")

    # Avoid duplicate logs if imported multiple times
    logger.propagate = False
    setattr(logger, "_glazier_configured", True)
    _CONFIGURED.append(logger)
    return logger


def set_verbose(verbose: bool) -> None:
    """Switch every package logger between progress output and silence.

    An explicit LOG_LEVEL always wins over the verbosity flag.
    """
    level = _env_level()
    if level is None:
        level = logging.INFO if verbose else _DEFAULT_LEVEL
    for logger in _CONFIGURED:
        _apply_level(logger, level)
