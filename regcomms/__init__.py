"""Regulatory incident communication and escalation engine."""

__version__ = "0.1.0"
