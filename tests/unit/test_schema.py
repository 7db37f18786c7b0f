"""
Unit tests for schema models, schema loading and DDL rendering.
"""

import copy

import pytest

from fakes import FakeConnector, PAYROLL_DOCUMENT, payroll_schema
from querygen.domain.errors import SchemaError
from querygen.domain.schema import DatabaseSchema
from querygen.repositories.schema_repository import parse_schema_document
from querygen.repositories.sql_connector import PgConnector, clean_query, map_column_type
from querygen.services.schema_helper import SchemaHelper, SchemaStore


class TestParseSchemaDocument:
    """YAML document to DatabaseSchema."""

    def test_camel_case_keys(self):
        """camelCase keys populate snake_case fields."""
        schema = payroll_schema()
        assert schema.tables["employees"].primary_key == ["id"]
        assert schema.relations[0].referenced_table == "currencies"

    def test_table_hashes_filled(self):
        """Every table gets a hash of its definition."""
        schema = payroll_schema()
        assert all(len(table.hash) == 64 for table in schema.tables.values())
        assert schema.tables["employees"].hash != schema.tables["currencies"].hash

    def test_unknown_relation_table(self):
        """A relation naming a missing table is rejected."""
        document = copy.deepcopy(PAYROLL_DOCUMENT)
        document["relations"][0]["referencedTable"] = "money"
        with pytest.raises(SchemaError):
            parse_schema_document(document)

    def test_not_a_mapping(self):
        """A document that is not a mapping is rejected."""
        with pytest.raises(SchemaError):
            parse_schema_document(["employees"])

    def test_invalid_column(self):
        """A column without type fails validation."""
        with pytest.raises(SchemaError):
            parse_schema_document({"tables": {"t": {"columns": {"c": {"description": "x"}}}}})


class TestFiltered:
    """Schema narrowing."""

    def test_keeps_relations_between_kept_tables(self):
        """A relation survives only when both sides are kept."""
        narrowed = payroll_schema().filtered(["employees", "currencies", "unknown"])

        assert list(narrowed.tables) == ["employees", "currencies"]
        assert [(r.table, r.referenced_table) for r in narrowed.relations] == [("employees", "currencies")]

    def test_original_untouched(self):
        """Filtering returns a copy."""
        schema = payroll_schema()
        schema.filtered(["employees"])
        assert len(schema.tables) == 4

    def test_store_requires_schema(self):
        """An empty schema store raises SchemaError."""
        with pytest.raises(SchemaError):
            SchemaStore().get()


class TestSchemaHelper:
    """Context rules and hashes."""

    def test_table_scoped_rule_applies_with_other_table(self):
        """A `{table: rule}` item applies only when that table is selected."""
        schema = payroll_schema()

        with_rates = SchemaHelper.tables_context(schema.filtered(["employees", "exchange_rates"]))
        without_rates = SchemaHelper.tables_context(schema.filtered(["employees"]))

        assert "Convert pay to dollars before comparing amounts" in with_rates
        assert "Use the most recent rate" in with_rates
        assert without_rates == []

    def test_hash_tables_ignores_order(self):
        """The dataset hash depends on names and column types, not order."""
        schema = payroll_schema()
        forward = schema.filtered(["employees", "currencies"])
        backward = DatabaseSchema(tables=dict(reversed(list(forward.tables.items()))))

        assert SchemaHelper.hash_tables(forward) == SchemaHelper.hash_tables(backward)
        assert SchemaHelper.hash_tables(forward) != SchemaHelper.hash_tables(schema.filtered(["employees"]))

    def test_compute_hash_follows_ddl(self):
        """The graph cache hash changes when the rendered schema changes."""
        helper = SchemaHelper(FakeConnector())
        schema = payroll_schema()

        assert helper.compute_hash(schema) == helper.compute_hash(payroll_schema())
        assert helper.compute_hash(schema) != helper.compute_hash(schema.filtered(["employees"]))


class TestDdl:
    """DDL rendering for prompts."""

    def test_create_and_alter_statements(self):
        """Tables render as CREATE TABLE and relations as foreign keys."""
        ddl = PgConnector(None).to_ddl(payroll_schema())  # type: ignore[arg-type]

        assert "-- Staff members and their monthly salary\nCREATE TABLE employees (" in ddl
        assert "  id UUID NOT NULL" in ddl
        assert "  salary INTEGER" in ddl
        assert "  valid_on TIMESTAMP WITH TIME ZONE" in ddl
        assert "  PRIMARY KEY (id)" in ddl
        assert (
            "ALTER TABLE employees ADD CONSTRAINT fk_employees_currency_id "
            "FOREIGN KEY (currency_id) REFERENCES currencies (id);"
        ) in ddl

    def test_explicit_type_wins(self):
        """A postgresql dataType in column metadata overrides the type map."""
        schema = parse_schema_document({
            "tables": {
                "t": {"columns": {"amount": {"type": "number", "metadata": {"postgresql": {"dataType": "numeric"}}}}}
            }
        })
        assert map_column_type("amount", schema.tables["t"].columns["amount"]) == "NUMERIC"


class TestCleanQuery:
    """Query cleanup before EXPLAIN / execution."""

    def test_trailing_semicolon(self):
        """Trailing semicolons are removed."""
        assert clean_query("SELECT 1;;") == "SELECT 1"

    def test_trailing_comments(self):
        """Trailing line and block comments are removed."""
        assert clean_query("SELECT 1; -- done") == "SELECT 1"
        assert clean_query("SELECT 1 /* note */") == "SELECT 1"

    def test_inner_comments_kept(self):
        """Comments above SQL lines stay."""
        query = "-- names\nSELECT name FROM employees"
        assert clean_query(query) == query
