"""Offline staging and publishing of S3 security token issuances."""

__version__ = "0.1.0"
