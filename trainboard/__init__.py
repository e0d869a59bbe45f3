"""Rouen ⇄ Le Havre departure board and train change monitor."""

__version__ = "0.1.0"
