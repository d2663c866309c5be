"""Shared test helpers (cluster builders, catalog loaders, polling)."""
