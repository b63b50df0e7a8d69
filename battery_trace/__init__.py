"""Charging power estimation and session tracking for battery-powered devices."""

__version__ = "0.1.0"
