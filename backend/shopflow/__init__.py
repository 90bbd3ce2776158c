"""Shopflow: catalog discovery pipeline and marketing automation backend."""

__version__ = "0.1.0"
