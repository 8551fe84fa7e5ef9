# ebay_sync/utils/logger.py
import logging
import os

LEVELS = {"ERROR": 40, "WARN": 30, "INFO": 20, "DEBUG": 10, "NONE": 100}

_log = logging.getLogger("ebay_sync")


def set_level(name: str | None):
    _log.setLevel(LEVELS.get((name or "INFO").upper(), 20))


set_level(os.getenv("LOG_LEVEL"))


def get_logger() -> logging.Logger:
    return _log


def debug(msg): _log.debug(msg)
def info(msg):  _log.info(msg)
def warn(msg):  _log.warning(msg)
def error(msg): _log.error(msg)
