"""Periodic jobs for the daemon."""
