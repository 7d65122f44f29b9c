"""Uptime Sentinel - scheduled HTTP(S) uptime monitoring."""

__version__ = "1.0.0"
