"""Preferences tracker application package."""
