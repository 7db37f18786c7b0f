from enum import Enum


class NodeType(str, Enum):
    TABLE = "table"
    COLUMN = "column"
    CONCEPT = "concept"


class EdgeType(str, Enum):
    CONTAINS = "contains"
    RELATES_TO = "relates_to"
    FOREIGN_KEY = "foreign_key"
    SEMANTIC = "semantic"


# Edge types stored in both directions
MIRRORED_EDGE_TYPES = frozenset({EdgeType.RELATES_TO, EdgeType.SEMANTIC})


class RelationType(str, Enum):
    BELONGS_TO = "belongsTo"
    HAS_MANY_THROUGH = "hasManyThrough"


class ColumnType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    OBJECT = "object"
    ARRAY = "array"


class PipelineStatus(str, Enum):
    """Outcome of the most recent stage, read by the routing functions."""
    PASS = "pass"
    QUERY_ERROR = "query_error"
    TABLE_ERROR = "table_not_found"
    PERMISSION_ERROR = "permission_error"
    FAILED = "failed"


class StageName(str, Enum):
    """Stages of the query generation workflow."""
    IS_IMPROVEMENT = "is_improvement"
    CHECK_CACHE = "check_cache"
    GET_TABLES = "get_tables"
    GET_COLUMNS = "get_columns"
    CHECK_PERMISSIONS = "check_permissions"
    SQL_GENERATION = "sql_generation"
    SYNTACTIC_VALIDATOR = "syntactic_validator"
    SEMANTIC_VALIDATOR = "semantic_validator"
    SAVE_DATASET = "save_dataset"
    FAILED = "failed"


class CacheCategory(str, Enum):
    """Verdict of the cache judge for the best cached candidate."""
    AS_IS = "as-is"
    SIMILAR = "similar"
    NOT_RELEVANT = "not-relevant"
