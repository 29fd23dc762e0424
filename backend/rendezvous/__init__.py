"""Rendezvous – real-time conversations, notifications and read-state."""

__version__ = "0.1.0"
