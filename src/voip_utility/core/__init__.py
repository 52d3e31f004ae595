"""
Core package initialization.
Contains the SIP session interface, session events and the loopback session.
"""

from .events import (
    EventChannel,
    RegistrationChanged,
    IncomingCall,
    CallStateChanged,
    ToneReceived,
    RegistrationState,
    CallState,
)
from .interfaces import SipSession, SipSessionBase, SessionError
from .digit_buffer import ToneDigitBuffer, MAX_TONE_DIGITS
from .mock_session import MockSipSession
from .backends import create_session

__all__ = [
    'EventChannel',
    'RegistrationChanged',
    'IncomingCall',
    'CallStateChanged',
    'ToneReceived',
    'RegistrationState',
    'CallState',
    'SipSession',
    'SipSessionBase',
    'SessionError',
    'ToneDigitBuffer',
    'MAX_TONE_DIGITS',
    'MockSipSession',
    'create_session',
]
