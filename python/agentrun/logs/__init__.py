from .logs import (
  configure_logging,
  set_log_level,
  set_log_levels,
  get_log_levels,
  create_log_levels,
  get_logger,
  InfoContext,
)
from .formatter import Formatter

__all__ = [
  "Formatter",
  "configure_logging",
  "get_logger",
  "set_log_level",
  "set_log_levels",
  "get_log_levels",
  "create_log_levels",
  "InfoContext",
]
