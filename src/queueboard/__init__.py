"""Queueboard — ticket queue coordination for clinics and service desks.

Kiosks hand out numbered tickets per service line, staff call them to
counters, and display boards follow along in real time over WebSockets.
"""

__version__ = "0.1.0"
