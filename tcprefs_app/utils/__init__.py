"""Shared helpers: logging setup and text utilities."""
