"""Dynamic NPC shop pricing driven by market pressure."""

__version__ = "0.1.0"
