"""Vacuum rental backend: machine lifecycle and usage-session orchestration."""
