from . import names
from .sinks import EventSink, NullSink, QueueSink, RecordingSink
from .fanout import FanoutSink, MonitorRegistry, SessionHub, monitored_envelope

__all__ = [
  "names",
  "EventSink",
  "NullSink",
  "QueueSink",
  "RecordingSink",
  "FanoutSink",
  "MonitorRegistry",
  "SessionHub",
  "monitored_envelope",
]
