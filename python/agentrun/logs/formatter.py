import logging
from datetime import UTC, datetime

from colorlog import ColoredFormatter

GREY = "\033[38;5;245m"
YELLOW = "\033[33m"
RESET = "\033[0m"

# Level names padded to the width of the others
SHORT_LEVEL_NAMES = {"WARNING": f"{YELLOW} WARN{RESET}", "CRITICAL": "FATAL"}


def dim(text: str) -> str:
  return f"{GREY}{text}{RESET}"


class Formatter(ColoredFormatter):
  """
  colorlog formatter with UTC ISO timestamps, dimmed logger names and short level names.

  Records are copied before they are changed, since every handler sees the same record.
  """

  def __init__(self, *args, **kwargs):
    kwargs.setdefault("datefmt", "%Y-%m-%dT%H:%M:%S.%fZ")
    super().__init__(*args, **kwargs)

  def format(self, record: logging.LogRecord) -> str:
    copy = logging.makeLogRecord(record.__dict__)
    copy.levelname = SHORT_LEVEL_NAMES.get(copy.levelname, copy.levelname)
    return super().format(copy)

  def formatTime(self, record: logging.LogRecord, datefmt=None) -> str:
    if not datefmt:
      return super().formatTime(record, datefmt)
    try:
      return datetime.fromtimestamp(record.created, UTC).strftime(datefmt)
    except (TypeError, ValueError, OverflowError):
      return str(record.created)

  def formatMessage(self, record: logging.LogRecord) -> str:
    record.name = dim(record.name.replace(".", "::"))
    record.asctime = dim(self.formatTime(record, self.datefmt))
    return super().formatMessage(record)
