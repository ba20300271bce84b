"""Utility functions for nebulactl."""
