"""Clinic appointment slot availability and booking engine."""

__version__ = "1.0.0"
