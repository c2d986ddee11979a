"""
Logging setup for agentrun.

Logging is configured once, on the first ``get_logger`` call, from:

- AGENTRUN_LOGGING: "0" leaves the logging configuration alone
- AGENTRUN_LOG_LEVELS: a default level and per-logger overrides, e.g. "DEBUG,poller=info,httpx=debug"
- AGENTRUN_LOG_FORMAT: colorlog format string
- AGENTRUN_LOG_SHOW_SOURCE: append the source file and line to every record

``set_log_level`` and ``set_log_levels`` apply new levels immediately.
"""

from contextlib import contextmanager

import os
import logging.config
from typing import Dict, Optional, Protocol

DEFAULT_LOG_FORMAT = "%(asctime)s %(log_color)s%(levelname)5s%(reset)s %(name)-14s %(message)s"
DEFAULT_LEVEL = "INFO"

# Loggers used across the package; each can be tuned with "name=level" in AGENTRUN_LOG_LEVELS
MODULE_LOGGERS = ("adapter", "poller", "tool", "agent", "events", "store", "conversation", "usage")

# Third party loggers that are too chatty at INFO
QUIET_LOGGERS = ("asyncio", "httpcore", "httpx", "openai", "openai._base_client")

LOG_COLORS = {
  "DEBUG": "blue",
  "INFO": "green",
  "WARNING": "yellow",
  "ERROR": "red",
  "CRITICAL": "bold_red",
}

_levels: Dict[str, str] = {}
_configured = False


def log_format() -> str:
  fmt = os.getenv("AGENTRUN_LOG_FORMAT", DEFAULT_LOG_FORMAT)
  if os.getenv("AGENTRUN_LOG_SHOW_SOURCE"):
    fmt += " [%(pathname)s:%(lineno)d]"
  return fmt


def logging_enabled() -> bool:
  return os.environ.get("AGENTRUN_LOGGING", "1") != "0"


def create_log_levels(log_levels: Optional[str]) -> Dict[str, str]:
  """
  Parse a level specification such as "DEBUG,poller=info".

  A bare level sets the default; "name=level" pairs set the level of a single logger.
  """
  result = {"default": DEFAULT_LEVEL}
  for entry in (log_levels or "").split(","):
    name, separator, level = entry.partition("=")
    if not name.strip():
      continue
    if separator:
      result[name.strip()] = level.strip().upper()
    else:
      result["default"] = name.strip().upper()
  return result


def create_logging_config(levels: Dict[str, str], fmt: str) -> dict:
  default = levels.get("default", DEFAULT_LEVEL)
  loggers = {name: {"level": levels.get(name, "WARNING")} for name in QUIET_LOGGERS}
  loggers.update({name: {"level": levels.get(name, default)} for name in MODULE_LOGGERS})
  for options in loggers.values():
    options.update({"handlers": ["default"], "propagate": False})

  return {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
      "default": {
        "()": "agentrun.logs.formatter.Formatter",
        "format": fmt,
        "log_colors": LOG_COLORS,
      },
    },
    "handlers": {
      "default": {
        "level": default,
        "formatter": "default",
        "class": "logging.StreamHandler",
      },
    },
    "loggers": loggers,
    "root": {"level": default, "handlers": ["default"]},
  }


def get_logging_config() -> dict:
  if not logging_enabled():
    return {"version": 1}
  if not _levels:
    _levels.update(create_log_levels(os.environ.get("AGENTRUN_LOG_LEVELS")))
  return create_logging_config(_levels, log_format())


def configure_logging(force: bool = False) -> None:
  global _configured
  if _configured and not force:
    return
  logging.config.dictConfig(get_logging_config())
  _configured = True


def set_log_levels(log_levels: Optional[str]) -> None:
  _levels.clear()
  _levels.update(create_log_levels(log_levels))
  configure_logging(force=True)


def set_log_level(module_name: str, level: str) -> None:
  if not _levels:
    _levels.update(create_log_levels(os.environ.get("AGENTRUN_LOG_LEVELS")))
  _levels[module_name] = level.upper()
  configure_logging(force=True)


def get_log_levels() -> Dict[str, str]:
  return dict(_levels)


def get_logger(logger_name: str) -> logging.Logger:
  configure_logging()
  return logging.getLogger(logger_name)


class LoggerAware(Protocol):
  logger: logging.Logger


class InfoContext(LoggerAware):
  @contextmanager
  def info(self, before_msg, after_msg):
    self.logger.info(before_msg)
    yield
    self.logger.info(after_msg)

