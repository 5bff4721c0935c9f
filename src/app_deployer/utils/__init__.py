"""Helpers for logging and filesystem work."""
