"""Paced, challenge-aware crawler for idealista.pt property listings."""

__version__ = "0.1.0"
