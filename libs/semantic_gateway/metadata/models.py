"""Schema objects discovered from a semantic model."""

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field


class ColumnInfo(BaseModel):
    """A column of a model table."""

    table_name: str
    name: str
    data_type: str = "Unknown"
    description: str = ""
    is_hidden: bool = False


class TableInfo(BaseModel):
    """A model table."""

    name: str
    type: str = "TABLE"
    description: str = ""
    column_count: int = 0


class MeasureInfo(BaseModel):
    """A DAX measure."""

    name: str
    table_name: str = ""
    expression: str = ""
    description: str = ""
    data_type: str = "Variant"


class RelationshipInfo(BaseModel):
    """A relationship between two table columns."""

    name: str = ""
    from_table: str
    from_column: str
    to_table: str
    to_column: str
    cross_filter_direction: str = "Single"
    is_active: bool = True


class ExtractionMethods(BaseModel):
    """Which categories were discovered successfully."""

    tables: bool = False
    columns: bool = False
    measures: bool = False
    relationships: bool = False


class SchemaSnapshot(BaseModel):
    """One consistent aggregation of a dataset's schema objects."""

    tenant_id: str
    workspace_id: str
    dataset_id: str
    dataset_name: str
    tables: list[TableInfo] = Field(default_factory=list)
    columns: list[ColumnInfo] = Field(default_factory=list)
    measures: list[MeasureInfo] = Field(default_factory=list)
    relationships: list[RelationshipInfo] = Field(default_factory=list)
    extracted_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    extraction_time_ms: int = 0
    extraction_methods: ExtractionMethods = Field(default_factory=ExtractionMethods)
    schema_version: int = 0
    last_sync: datetime | None = None
    is_cached: bool = False

    def columns_of(self, table_name: str) -> list[ColumnInfo]:
        return [c for c in self.columns if c.table_name == table_name]


class GlossaryColumn(BaseModel):
    name: str
    data_type: str
    description: str
    is_hidden: bool


class GlossaryTable(BaseModel):
    description: str
    type: str
    columns: list[GlossaryColumn] = Field(default_factory=list)


class GlossaryMeasure(BaseModel):
    description: str
    expression: str
    table_name: str
    data_type: str


class GlossaryRelationship(BaseModel):
    """Directional ``Table[Column]`` pair."""

    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(alias="from")
    to: str
    direction: str
    is_active: bool


class Glossary(BaseModel):
    """Human-readable grouping of schema objects."""

    tables: dict[str, GlossaryTable] = Field(default_factory=dict)
    measures: dict[str, GlossaryMeasure] = Field(default_factory=dict)
    relationships: list[GlossaryRelationship] = Field(default_factory=list)


class SchemaCounts(BaseModel):
    table_count: int
    column_count: int
    measure_count: int
    relationship_count: int


class ContextTable(BaseModel):
    name: str
    description: str
    column_count: int


class ContextMeasure(BaseModel):
    name: str
    description: str
    table_name: str


class SemanticContext(BaseModel):
    """Composite response for downstream natural-language consumers."""

    dataset_id: str
    dataset_name: str
    summary: SchemaCounts
    tables: list[ContextTable]
    measures: list[ContextMeasure]
    glossary: Glossary
    text_context: str
    extraction_methods: ExtractionMethods
    schema_version: int = 0
