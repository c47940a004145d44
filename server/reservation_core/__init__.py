"""Reservation and payment coordinator service."""

__version__ = "1.0.0"
