"""Aggregated calendar from local and remote sources."""
