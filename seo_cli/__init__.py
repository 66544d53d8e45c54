"""Operator CLI for the SEO pipeline engine."""

__version__ = "1.0.0"
