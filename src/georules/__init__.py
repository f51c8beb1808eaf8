"""Subscription proxy that layers country and tag routing rules into configs."""

__version__ = "0.3.0"
