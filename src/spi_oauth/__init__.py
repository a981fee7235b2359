"""OAuth broker obtaining service provider tokens for cluster identities."""

__version__ = "0.1.0"
