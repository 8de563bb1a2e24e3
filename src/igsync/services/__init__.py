"""Sync, caching and comparison services."""
