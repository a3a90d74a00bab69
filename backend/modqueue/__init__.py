"""Moderation report engine: intake, queues and inquiry claims."""

__version__ = "0.1.0"
