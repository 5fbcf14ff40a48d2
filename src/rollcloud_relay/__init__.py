"""Relay turn notifications and commands between RollCloud and Discord."""

__version__ = "0.1.0"
