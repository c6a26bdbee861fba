"""Slot-scheduled crank accounts, instruction builders, in-memory program logic and cranker."""

__version__ = "0.1.1"