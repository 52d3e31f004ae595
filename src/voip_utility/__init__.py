"""
voip-utility package.
Scripted SIP call scenario testing with tone digit and beep verification.
"""

__version__ = "1.0.0"
