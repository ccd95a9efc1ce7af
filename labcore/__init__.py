"""Shared storage, settings and logging helpers for the lab application."""
