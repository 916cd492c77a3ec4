"""Automation rules engine for advertising campaigns."""

__version__ = "1.0.0"
