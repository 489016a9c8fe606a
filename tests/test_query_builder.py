"""Tests for dbmapper.query_builder."""

import datetime
from typing import Optional

import pytest

from dbmapper.base_model import CRUD, BaseTableModel, Column
from dbmapper.exceptions import InvalidOperationError, MissingPrimaryKeyError
from dbmapper.query_builder import (
    build_delete,
    build_enum_select,
    build_insert,
    build_select_all,
    build_update,
    is_procedure_name,
)


class Driver(BaseTableModel):
    driver_id: Optional[int] = Column(primary_key=True)
    name: Optional[str] = Column()
    rating: Optional[float] = Column()
    created_at: Optional[datetime.datetime] = Column(skip=CRUD.CREATE | CRUD.UPDATE)


class AuditEntry(BaseTableModel):
    __table_name__ = "audit_log"

    message: Optional[str] = Column()
    level: Optional[int] = Column()


class TestIsProcedureName:
    """Tests for procedure-name detection."""

    def test_single_word(self):
        """Test a single word is a routine name."""
        assert is_procedure_name("get_active_drivers")

    def test_query_text(self):
        """Test text with whitespace is a query."""
        assert not is_procedure_name("SELECT * FROM Driver")
        assert not is_procedure_name("SELECT\n1")
        assert not is_procedure_name("SELECT\t1")


class TestBuildInsert:
    """Tests for INSERT generation."""

    def test_single_instance(self):
        """Test insert for one instance."""
        statement = build_insert(Driver, [Driver(driver_id=5, name="Ana", rating=4.5)])
        assert statement.text == (
            "INSERT INTO Driver (name, rating) VALUES (%(name_1)s, %(rating_1)s)"
        )
        assert statement.params == {"name_1": "Ana", "rating_1": 4.5}

    def test_one_values_tuple_per_instance(self):
        """Test one VALUES tuple per instance with 1-based suffixes."""
        drivers = [Driver(name=f"driver{i}", rating=float(i)) for i in range(1, 4)]
        statement = build_insert(Driver, drivers)
        assert statement.text.count("(%(name_") == 3
        for position in (1, 2, 3):
            assert f"%(name_{position})s" in statement.text
            assert statement.params[f"name_{position}"] == f"driver{position}"
            assert statement.params[f"rating_{position}"] == float(position)
        assert list(statement.params) == [
            "name_1", "rating_1", "name_2", "rating_2", "name_3", "rating_3",
        ]

    def test_primary_key_and_skipped_columns_never_inserted(self):
        """Test the key and skipped columns are never inserted."""
        statement = build_insert(Driver, [Driver(driver_id=1, name="Ana"), Driver(driver_id=2)])
        assert "driver_id" not in statement.text
        assert "created_at" not in statement.text

    def test_table_name_override(self):
        """Test insert uses the overridden table name."""
        statement = build_insert(AuditEntry, [AuditEntry(message="hi", level=1)])
        assert statement.text.startswith("INSERT INTO audit_log (message, level)")

    @pytest.mark.parametrize("instances", [[], None])
    def test_empty_input_rejected(self, instances):
        """Test insert rejects empty input."""
        with pytest.raises(InvalidOperationError):
            build_insert(Driver, instances)


class TestBuildSelectAll:
    """Tests for SELECT * generation."""

    def test_select_all(self):
        """Test selecting the whole table."""
        assert build_select_all(Driver).text == "SELECT * FROM Driver"
        assert build_select_all(Driver).params == {}


class TestBuildUpdate:
    """Tests for UPDATE generation."""

    def test_set_and_where(self):
        """Test SET and WHERE clauses."""
        statement = build_update(Driver(driver_id=7, name="Ben", rating=3.0))
        assert statement.text == (
            "UPDATE Driver SET name = %(name)s, rating = %(rating)s "
            "WHERE driver_id = %(driver_id)s"
        )
        assert statement.params == {"name": "Ben", "rating": 3.0, "driver_id": 7}

    def test_key_only_in_where(self):
        """Test the key appears only in WHERE."""
        statement = build_update(Driver(driver_id=7, name="Ben"))
        set_clause, where_clause = statement.text.split(" WHERE ")
        assert "driver_id" not in set_clause
        assert where_clause == "driver_id = %(driver_id)s"
        assert set_clause.count("name =") == 1

    def test_missing_primary_key(self):
        """Test update without a key raises."""
        with pytest.raises(MissingPrimaryKeyError):
            build_update(AuditEntry(message="hi"))

    def test_nothing_to_update(self):
        """Test update with no settable column raises."""
        class Tag(BaseTableModel):
            tag_id: Optional[int] = Column(primary_key=True)
            label: Optional[str] = Column(skip=CRUD.UPDATE)

        with pytest.raises(InvalidOperationError):
            build_update(Tag(tag_id=1, label="x"))


class TestBuildDelete:
    """Tests for DELETE generation."""

    def test_delete_is_parameterized(self):
        """Test delete binds the key value."""
        statement = build_delete(Driver(driver_id=7))
        assert statement.text == "DELETE FROM Driver WHERE driver_id = %(driver_id)s"
        assert statement.params == {"driver_id": 7}

    def test_string_key_not_interpolated(self):
        """Test a string key never reaches the SQL text."""
        class Session(BaseTableModel):
            token: Optional[str] = Column(primary_key=True)

        statement = build_delete(Session(token="x'; DROP TABLE Session; --"))
        assert "DROP" not in statement.text
        assert statement.params == {"token": "x'; DROP TABLE Session; --"}

    def test_missing_primary_key(self):
        """Test delete without a key raises."""
        with pytest.raises(MissingPrimaryKeyError):
            build_delete(AuditEntry(message="hi"))


class TestBuildEnumSelect:
    """Tests for lookup-table SELECT generation."""

    def test_defaults(self):
        """Test the default lookup columns."""
        statement = build_enum_select("status")
        assert statement.text == "SELECT id AS value, name AS name FROM status"

    def test_custom_columns(self):
        """Test custom lookup columns."""
        statement = build_enum_select("vehicle_type", name_column="label", value_column="code")
        assert statement.text == "SELECT code AS value, label AS name FROM vehicle_type"

    def test_blank_table(self):
        """Test a blank table name is rejected."""
        with pytest.raises(InvalidOperationError):
            build_enum_select(" ")
