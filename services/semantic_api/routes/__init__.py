"""Semantic gateway API route modules."""

from . import xmla

__all__ = ["xmla"]
