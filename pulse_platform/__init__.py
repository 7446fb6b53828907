"""Pulse order splitting and slice execution engine."""
__version__ = "1.0.0"
