"""API gateway services."""
