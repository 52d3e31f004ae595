"""
Output package initialization.
Contains the JSON-lines event stream.
"""

from .events import (
    EventType,
    Event,
    EventEmitter,
    JsonEventEmitter,
    NullEventEmitter,
    MemoryEventEmitter,
)
