"""Papertrail: research sources in, cited documents out."""

__version__ = "0.1.0"
