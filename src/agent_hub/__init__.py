"""Durable job queue and feed relay for natural-language agent tasks."""

__version__ = "0.1.0"
