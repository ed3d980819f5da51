"""Bundled protocol registry index."""
