"""Mbox scanning, MIME message parsing and index file reading for mail search."""

__version__ = "0.1.0"