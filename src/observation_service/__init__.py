"""Observation lifecycle services for the education-monitoring platform."""

__version__ = "0.1.0"
