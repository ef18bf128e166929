"""Pure transformations from a schema snapshot to human-readable forms."""

from .models import (
    Glossary,
    GlossaryColumn,
    GlossaryMeasure,
    GlossaryRelationship,
    GlossaryTable,
    SchemaSnapshot,
)


def build_glossary(snapshot: SchemaSnapshot) -> Glossary:
    """Group columns under their tables and fill in default descriptions."""
    tables: dict[str, GlossaryTable] = {}
    for table in snapshot.tables:
        tables[table.name] = GlossaryTable(
            description=table.description or f"{table.name} table",
            type=table.type,
            columns=[
                GlossaryColumn(
                    name=column.name,
                    data_type=column.data_type,
                    description=column.description or f"{column.name} column",
                    is_hidden=column.is_hidden,
                )
                for column in snapshot.columns_of(table.name)
            ],
        )

    measures = {
        measure.name: GlossaryMeasure(
            description=measure.description or f"{measure.name} measure",
            expression=measure.expression,
            table_name=measure.table_name,
            data_type=measure.data_type,
        )
        for measure in snapshot.measures
    }

    relationships = [
        GlossaryRelationship(
            from_=f"{rel.from_table}[{rel.from_column}]",
            to=f"{rel.to_table}[{rel.to_column}]",
            direction=rel.cross_filter_direction,
            is_active=rel.is_active,
        )
        for rel in snapshot.relationships
    ]

    return Glossary(tables=tables, measures=measures, relationships=relationships)


def build_text_summary(snapshot: SchemaSnapshot, glossary: Glossary) -> str:
    """
    Flatten a snapshot into a plain-text report.

    Output order follows the snapshot's collections, so the same snapshot
    always renders to the same text.
    """
    lines = [f"Dataset: {snapshot.dataset_name}", ""]

    # Empty categories keep their header so a failed extraction shows as (0).
    lines.append(f"Tables ({len(snapshot.tables)}):")
    for table in snapshot.tables:
        lines.append(f"- {table.name}: {table.description or 'No description'}")
        entry = glossary.tables.get(table.name)
        if entry and entry.columns:
            names = ", ".join(column.name for column in entry.columns)
            lines.append(f"  Columns: {names}")
    lines.append("")

    lines.append(f"Measures ({len(snapshot.measures)}):")
    for measure in snapshot.measures:
        lines.append(f"- {measure.name}: {measure.description or 'No description'}")
    lines.append("")

    lines.append(f"Relationships ({len(snapshot.relationships)}):")
    for rel in snapshot.relationships:
        lines.append(
            f"- {rel.from_table}[{rel.from_column}] -> "
            f"{rel.to_table}[{rel.to_column}]"
        )
    lines.append("")

    return "\n".join(lines).rstrip() + "\n"
