"""Team Pulse — chat sentiment monitoring and burnout detection."""

__version__ = "1.0.0"
