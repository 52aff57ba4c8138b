"""Sensor monitoring service with temperature, light, logging and TCP query workers."""

__version__ = "1.8.0"