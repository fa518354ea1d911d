"""Supervisor and durable-state manager for the OpenClaw gateway container."""

__version__ = "0.1.0"
