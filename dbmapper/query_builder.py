"""
SQL generation for mapped models.

Every builder returns a :class:`Statement`: the SQL text with psycopg2
``%(name)s`` placeholders and the matching ordered bindings. Values are
always bound, never interpolated into the text.
"""

import logging
from typing import Any, Dict, Iterable, Type

from pydantic import BaseModel, Field

from dbmapper.base_model import CRUD, BaseTableModel, adapt_value
from dbmapper.exceptions import InvalidOperationError, MissingPrimaryKeyError

logger = logging.getLogger("dbmapper.query_builder")


class Statement(BaseModel):
    """Generated SQL text and its named parameter bindings."""

    text: str
    params: Dict[str, Any] = Field(default_factory=dict)


def is_procedure_name(text: str) -> bool:
    """A statement with no whitespace is the name of a stored routine."""
    return not any(char.isspace() for char in text)


def _placeholder(name: str) -> str:
    return f"%({name})s"


def _equate(name: str) -> str:
    return f"{name} = {_placeholder(name)}"


def build_insert(model_cls: Type[BaseTableModel], instances: Iterable[BaseTableModel]) -> Statement:
    """
    Build one INSERT with a VALUES tuple per instance. The primary key is
    left out (database-generated). Parameters are suffixed with the 1-based
    position of the instance: ``%(name_1)s``, ``%(name_2)s``, ...
    """
    instances = list(instances) if instances is not None else []
    if not instances:
        raise InvalidOperationError("Nothing to insert: no instances given")

    fields, _ = model_cls.get_fields(CRUD.CREATE, exclude_primary_key=True)
    if not fields:
        raise InvalidOperationError(f"{model_cls.__name__} has no columns to insert")

    column_list = ", ".join(field.name for field in fields)
    params: Dict[str, Any] = {}
    rows = []
    for position, instance in enumerate(instances, start=1):
        names = []
        for field in fields:
            param_name = f"{field.name}_{position}"
            params[param_name] = adapt_value(field.get_value(instance))
            names.append(_placeholder(param_name))
        rows.append(f"({', '.join(names)})")

    text = f"INSERT INTO {model_cls.get_table_name()} ({column_list}) VALUES " + ",\n".join(rows)
    return Statement(text=text, params=params)


def build_select_all(model_cls: Type[BaseTableModel]) -> Statement:
    return Statement(text=f"SELECT * FROM {model_cls.get_table_name()}")


def build_update(instance: BaseTableModel) -> Statement:
    """
    Build ``UPDATE <table> SET col = %(col)s, ... WHERE key = %(key)s`` from
    the instance's update fields. Raises if the model has no primary key.
    """
    model_cls = type(instance)
    fields, pk_field = model_cls.get_fields(CRUD.UPDATE, exclude_primary_key=True)
    if pk_field is None:
        raise MissingPrimaryKeyError(
            f"Cannot update {model_cls.__name__}: no primary key column mapped for update"
        )
    if not fields:
        raise InvalidOperationError(f"{model_cls.__name__} has no columns to update")

    params = {field.name: adapt_value(field.get_value(instance)) for field in fields}
    params[pk_field.name] = adapt_value(pk_field.get_value(instance))

    updates = ", ".join(_equate(field.name) for field in fields)
    text = f"UPDATE {model_cls.get_table_name()} SET {updates} WHERE {_equate(pk_field.name)}"
    return Statement(text=text, params=params)


def build_delete(instance: BaseTableModel) -> Statement:
    """Build a DELETE bound on the instance's primary key value."""
    model_cls = type(instance)
    _, pk_field = model_cls.get_fields(CRUD.DELETE)
    if pk_field is None:
        raise MissingPrimaryKeyError(
            f"Cannot delete {model_cls.__name__}: no primary key column mapped for delete"
        )

    text = f"DELETE FROM {model_cls.get_table_name()} WHERE {_equate(pk_field.name)}"
    return Statement(text=text, params={pk_field.name: adapt_value(pk_field.get_value(instance))})


def build_enum_select(table_name: str, name_column: str = "name", value_column: str = "id") -> Statement:
    """Select a lookup table's columns aliased onto ``DbEnum``'s ``value`` and ``name``."""
    if not table_name or not table_name.strip():
        raise InvalidOperationError("Lookup table name must not be blank")
    return Statement(text=f"SELECT {value_column} AS value, {name_column} AS name FROM {table_name}")
