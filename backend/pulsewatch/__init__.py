"""PulseWatch - self-hosted uptime monitoring."""

__version__ = "1.0.0"
