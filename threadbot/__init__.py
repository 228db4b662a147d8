"""Event routing and streaming replies for multi-platform chat bots."""

__version__ = "0.1.0"
