"""
Logging helpers shared by every module.

Modules call ``get_logger(__name__)``. The entry point calls
``setup_logging`` once to attach console (and optionally file) handlers to the
root logger; until then each logger gets its own console handler.
"""
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

DETAILED_FORMAT = '%(asctime)s.%(msecs)03d [%(levelname)8s] %(name)s:%(lineno)d - %(message)s'
CONSOLE_FORMAT = '[%(levelname)s] %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def get_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    logger = logging.getLogger(name)

    if logging.getLogger().handlers:
        logger.setLevel(level if level is not None else logging.NOTSET)
        logger.propagate = True
        return logger

    if not logger.handlers:
        if level is None:
            level = logging.INFO
        logger.setLevel(level)
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(DETAILED_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(handler)
        logger.propagate = False

    return logger


def parse_level(value: Union[str, int, None], default: int = logging.INFO) -> int:
    if value is None or value == "":
        return default
    if isinstance(value, int):
        return value
    s = str(value).strip()
    if s.isdigit():
        return int(s)
    resolved = logging.getLevelName(s.upper())
    return resolved if isinstance(resolved, int) else default


def setup_logging(level: int = logging.INFO, log_file: Optional[Path] = None) -> Optional[Path]:
    """Configure the root logger: console always, rotating file when ``log_file`` is given."""
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root.addHandler(console)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=1024 * 1024, backupCount=5, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(DETAILED_FORMAT, datefmt=DATE_FORMAT))
        root.addHandler(file_handler)

    root.setLevel(level)

    # loggers created before setup kept private handlers; hand them back to root
    for existing in list(logging.Logger.manager.loggerDict.values()):
        if isinstance(existing, logging.Logger) and existing.name.startswith("wyne"):
            for h in existing.handlers[:]:
                existing.removeHandler(h)
            existing.propagate = True
            existing.setLevel(logging.NOTSET)

    logging.getLogger(__name__).debug("Logging configured (level=%s, file=%s)",
                                      logging.getLevelName(level), log_file)
    return log_file
