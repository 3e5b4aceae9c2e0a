"""ProjectHub API package."""
