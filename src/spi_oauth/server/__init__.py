"""HTTP surface of the OAuth service."""
