"""Shared helpers: logging, subprocess execution and value parsing."""
