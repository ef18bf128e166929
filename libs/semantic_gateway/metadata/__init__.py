"""Schema discovery, normalization and glossary generation."""

from .aggregator import MetadataAggregator
from .glossary import build_glossary, build_text_summary
from .models import (
    ColumnInfo,
    ExtractionMethods,
    Glossary,
    MeasureInfo,
    RelationshipInfo,
    SchemaSnapshot,
    SemanticContext,
    TableInfo,
)

__all__ = [
    "MetadataAggregator",
    "build_glossary",
    "build_text_summary",
    "ColumnInfo",
    "ExtractionMethods",
    "Glossary",
    "MeasureInfo",
    "RelationshipInfo",
    "SchemaSnapshot",
    "SemanticContext",
    "TableInfo",
]
