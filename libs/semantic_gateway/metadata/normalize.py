"""
Row normalization for discovery results.

The remote service is inconsistent about how it names result columns: the
same ``SELECTCOLUMNS`` alias may come back as ``TableName``, as
``[TableName]``, or only by position. Every lookup here tries the name first
and falls back to the position, and nothing else in the package needs to care.
"""

from typing import Any

from ..errors import MalformedResultError
from ..models import Row
from .models import ColumnInfo, MeasureInfo, RelationshipInfo, TableInfo

_MISSING = object()


def _named(row: Row, name: str) -> Any:
    if not isinstance(row, dict):
        return _MISSING
    for candidate in (name, f"[{name}]"):
        value = row.get(candidate)
        if value is not None and value != "":
            return value
    return _MISSING


def _positional(row: Row, index: int) -> Any:
    values = list(row.values()) if isinstance(row, dict) else row
    if 0 <= index < len(values):
        return values[index]
    return _MISSING


def cell(row: Row, name: str, index: int | None = None, default: Any = None) -> Any:
    """Named lookup, then positional lookup when ``index`` is given, then default."""
    value = _named(row, name)
    if value is _MISSING and index is not None:
        value = _positional(row, index)
    if value is _MISSING or value is None:
        return default
    return value


def _require(value: Any, category: str, field: str) -> str:
    if value is None or value == "":
        raise MalformedResultError(f"{category} row without {field}")
    return str(value)


def _check_rows(rows: Any, category: str) -> list[Row]:
    if not isinstance(rows, list):
        raise MalformedResultError(f"{category} result has no rows")
    for row in rows:
        if not isinstance(row, dict | list):
            raise MalformedResultError(f"{category} result has an unreadable row")
    return rows


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def normalize_tables(rows: Any) -> list[TableInfo]:
    return [
        TableInfo(
            name=_require(cell(row, "TableName", 0), "table", "name"),
            type=str(cell(row, "TableType", default="TABLE")),
            description=str(cell(row, "Description", default="")),
        )
        for row in _check_rows(rows, "table")
    ]


def normalize_columns(rows: Any) -> list[ColumnInfo]:
    return [
        ColumnInfo(
            table_name=_require(cell(row, "TableName", 0), "column", "table name"),
            name=_require(cell(row, "ColumnName", 1), "column", "name"),
            data_type=str(cell(row, "DataType", default="Unknown")),
            description=str(cell(row, "Description", default="")),
            is_hidden=_as_bool(cell(row, "IsHidden"), default=False),
        )
        for row in _check_rows(rows, "column")
    ]


def normalize_measures(rows: Any) -> list[MeasureInfo]:
    return [
        MeasureInfo(
            name=_require(cell(row, "MeasureName", 0), "measure", "name"),
            table_name=str(cell(row, "TableName", default="")),
            expression=str(cell(row, "Expression", default="")),
            description=str(cell(row, "Description", default="")),
            data_type=str(cell(row, "DataType", default="Variant")),
        )
        for row in _check_rows(rows, "measure")
    ]


def normalize_relationships(rows: Any) -> list[RelationshipInfo]:
    return [
        RelationshipInfo(
            name=str(cell(row, "RelationshipName", default="")),
            from_table=_require(cell(row, "FromTable", 1), "relationship", "from table"),
            from_column=_require(
                cell(row, "FromColumn", 2), "relationship", "from column"
            ),
            to_table=_require(cell(row, "ToTable", 3), "relationship", "to table"),
            to_column=_require(cell(row, "ToColumn", 4), "relationship", "to column"),
            cross_filter_direction=str(
                cell(row, "CrossFilterDirection", default="Single")
            ),
            # Only an explicit false deactivates a relationship.
            is_active=cell(row, "IsActive") is not False,
        )
        for row in _check_rows(rows, "relationship")
    ]


def _described_tables(payload: Any) -> list[dict[str, Any]]:
    if not isinstance(payload, dict) or not isinstance(payload.get("tables"), list):
        raise MalformedResultError("Descriptive payload has no tables")
    return payload["tables"]


def tables_from_description(payload: Any) -> list[TableInfo]:
    return [
        TableInfo(
            name=_require(table.get("name"), "table", "name"),
            description=table.get("description") or "",
            column_count=len(table.get("columns") or []),
        )
        for table in _described_tables(payload)
    ]


def columns_from_description(payload: Any) -> list[ColumnInfo]:
    return [
        ColumnInfo(
            table_name=_require(table.get("name"), "table", "name"),
            name=_require(column.get("name"), "column", "name"),
            data_type=column.get("dataType") or "Unknown",
            description=column.get("description") or "",
            is_hidden=bool(column.get("isHidden", False)),
        )
        for table in _described_tables(payload)
        for column in table.get("columns") or []
    ]


def measures_from_description(payload: Any) -> list[MeasureInfo]:
    return [
        MeasureInfo(
            name=_require(measure.get("name"), "measure", "name"),
            table_name=measure.get("tableName") or table.get("name") or "",
            expression=measure.get("expression") or "",
            description=measure.get("description") or "",
        )
        for table in _described_tables(payload)
        for measure in table.get("measures") or []
    ]


def relationships_from_description(payload: Any) -> list[RelationshipInfo]:
    if not isinstance(payload, dict) or not isinstance(
        payload.get("relationships"), list
    ):
        raise MalformedResultError("Descriptive payload has no relationships")
    return [
        RelationshipInfo(
            name=rel.get("name") or "",
            from_table=_require(rel.get("fromTable"), "relationship", "from table"),
            from_column=_require(rel.get("fromColumn"), "relationship", "from column"),
            to_table=_require(rel.get("toTable"), "relationship", "to table"),
            to_column=_require(rel.get("toColumn"), "relationship", "to column"),
            cross_filter_direction=rel.get("crossFilteringBehavior") or "Single",
            is_active=rel.get("isActive") is not False,
        )
        for rel in payload["relationships"]
    ]
