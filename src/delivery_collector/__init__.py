"""Grab/GoJek restaurant delivery stats collector."""

__version__ = "0.1.0"
