"""Psychometric analytics and item anomaly detection engine."""

__version__ = "0.1.0"
