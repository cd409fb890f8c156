"""Disk, pool and image storage operations."""
