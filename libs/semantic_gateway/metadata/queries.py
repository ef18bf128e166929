"""DAX discovery queries over the model's INFORMATION_SCHEMA functions."""

TABLES_QUERY = """
EVALUATE
SELECTCOLUMNS(
    FILTER(INFORMATION_SCHEMA_TABLES(), [TABLE_TYPE] <> "SYSTEM"),
    "TableName", [TABLE_NAME],
    "TableType", [TABLE_TYPE],
    "Description", [DESCRIPTION]
)
""".strip()

COLUMNS_QUERY = """
EVALUATE
SELECTCOLUMNS(
    INFORMATION_SCHEMA_COLUMNS(),
    "TableName", [TABLE_NAME],
    "ColumnName", [COLUMN_NAME],
    "DataType", [DATA_TYPE],
    "Description", [DESCRIPTION],
    "IsHidden", [IS_HIDDEN]
)
""".strip()

MEASURES_QUERY = """
EVALUATE
SELECTCOLUMNS(
    INFORMATION_SCHEMA_MEASURES(),
    "MeasureName", [MEASURE_NAME],
    "TableName", [TABLE_NAME],
    "Expression", [EXPRESSION],
    "Description", [DESCRIPTION],
    "DataType", [DATA_TYPE]
)
""".strip()

RELATIONSHIPS_QUERY = """
EVALUATE
SELECTCOLUMNS(
    INFORMATION_SCHEMA_RELATIONSHIPS(),
    "RelationshipName", [RELATIONSHIP_NAME],
    "FromTable", [FROM_TABLE],
    "FromColumn", [FROM_COLUMN],
    "ToTable", [TO_TABLE],
    "ToColumn", [TO_COLUMN],
    "CrossFilterDirection", [CROSS_FILTER_DIRECTION],
    "IsActive", [IS_ACTIVE]
)
""".strip()
