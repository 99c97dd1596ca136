"""Concrete remote document-store adapters."""
