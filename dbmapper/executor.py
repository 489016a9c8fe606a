"""
CRUD, lookup and raw execution on top of :class:`~dbmapper.db_util.DbUtil`.

:class:`DbExecutor` turns mapped models into SQL with
:mod:`dbmapper.query_builder`, runs it on a per-call connection, and maps rows
back into model instances. Every operation returns an
:class:`~dbmapper.db_util.ExecutionResult`.
"""

import dataclasses
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel

from dbmapper.base_model import BaseTableModel, DbEnum, adapt_value
from dbmapper.db_util import DbUtil, ExecutionResult, InfoHandler, affected_rows, fetch_frame, fetch_rows
from dbmapper.exceptions import InvalidOperationError
from dbmapper.query_builder import (
    Statement,
    build_delete,
    build_enum_select,
    build_insert,
    build_select_all,
    build_update,
    is_procedure_name,
)

logger = logging.getLogger("dbmapper.executor")

T = TypeVar("T", bound=BaseTableModel)


def parameters_from(parameters: Any) -> Dict[str, Any]:
    """
    Turn a parameter bag into named bindings. Accepts a mapping, a pydantic
    model, a dataclass instance, a namedtuple, or any object with public
    attributes.
    """
    if parameters is None:
        return {}
    if isinstance(parameters, Mapping):
        values = dict(parameters)
    elif isinstance(parameters, BaseModel):
        values = {name: getattr(parameters, name) for name in type(parameters).model_fields}
    elif dataclasses.is_dataclass(parameters) and not isinstance(parameters, type):
        values = {field.name: getattr(parameters, field.name) for field in dataclasses.fields(parameters)}
    elif isinstance(parameters, tuple) and hasattr(parameters, "_asdict"):
        values = parameters._asdict()
    elif hasattr(parameters, "__dict__"):
        values = {name: value for name, value in vars(parameters).items() if not name.startswith("_")}
    else:
        raise InvalidOperationError(
            f"Cannot bind parameters from {type(parameters).__name__}: "
            "pass a mapping, pydantic model, dataclass, namedtuple or plain object"
        )
    return {name: adapt_value(value) for name, value in values.items()}


class DbExecutor:
    """
    Maps :class:`BaseTableModel` subclasses onto same-named tables.

    ``use_transactions`` is read on every call; set it once at startup. With
    it enabled a failing call is rolled back and its result carries the
    error; without it driver errors propagate to the caller.

    Example::

        executor = DbExecutor("host=localhost dbname=fleet user=app")
        executor.create([Driver(name="Ana"), Driver(name="Ben")])
        drivers = executor.retrieve(Driver).value
    """

    def __init__(
        self,
        connection: Union[str, Dict, None] = None,
        info_handler: Optional[InfoHandler] = None,
        use_transactions: bool = False,
    ):
        self.db = DbUtil(connection, info_handler=info_handler)
        self.use_transactions = use_transactions

    def _run(self, statement: Statement, action, default=None) -> ExecutionResult:
        return self.db.run(
            statement.text,
            statement.params,
            action,
            use_transactions=self.use_transactions,
            default=default,
        )

    def create(self, instances: Union[BaseTableModel, Iterable[BaseTableModel]]) -> ExecutionResult:
        """
        Insert one instance or a non-empty sequence of instances of one model
        in a single statement. Value is True if any row was inserted.
        """
        if isinstance(instances, BaseTableModel):
            instances = [instances]
        instances = list(instances) if instances is not None else []
        if not instances:
            raise InvalidOperationError("Nothing to insert: no instances given")

        model_cls = type(instances[0])
        logger.debug("Inserting %d %s row(s)", len(instances), model_cls.get_table_name())
        statement = build_insert(model_cls, instances)
        result = self._run(statement, affected_rows, default=0)
        return ExecutionResult(value=(result.value or 0) > 0, error=result.error)

    def retrieve(
        self,
        model_cls: Type[T],
        query: Optional[str] = None,
        parameters: Any = None,
    ) -> ExecutionResult:
        """
        Run ``query`` (or a stored routine if it is a single word) and map each
        row onto ``model_cls``. Without a query selects the whole table.
        """
        if query is None:
            statement = build_select_all(model_cls)
        else:
            statement = Statement(text=query, params=parameters_from(parameters))

        def materialize(cursor) -> List[T]:
            return [model_cls.from_row(row) for row in fetch_rows(cursor)]

        return self._run(statement, materialize, default=[])

    def retrieve_frame(self, query: str, parameters: Any = None) -> ExecutionResult:
        """Like :meth:`retrieve` but returns the rows as a pandas DataFrame."""
        statement = Statement(text=query, params=parameters_from(parameters))
        return self._run(statement, fetch_frame)

    def update(self, instance: BaseTableModel) -> ExecutionResult:
        """Update the row matching the instance's primary key. Value is the affected row count."""
        return self._run(build_update(instance), affected_rows, default=0)

    def delete(self, instance: BaseTableModel) -> ExecutionResult:
        """Delete the row matching the instance's primary key. Value is True if a row was deleted."""
        result = self._run(build_delete(instance), affected_rows, default=0)
        return ExecutionResult(value=(result.value or 0) > 0, error=result.error)

    def get_enum(
        self,
        table_name: str,
        name_column: str = "name",
        value_column: str = "id",
        value_type: Any = Any,
    ) -> ExecutionResult:
        """Read a lookup table into a list of :class:`DbEnum` rows, in row order."""
        statement = build_enum_select(table_name, name_column, value_column)
        return self.retrieve(DbEnum[value_type], statement.text)

    def execute(self, text: str, parameters: Any = None) -> ExecutionResult:
        """Run a query or stored routine. Value is the affected row count."""
        statement = Statement(text=text or "", params=parameters_from(parameters))
        return self._run(statement, affected_rows, default=0)

    def execute_procedure(self, procedure_name: str, parameters: Any = None) -> ExecutionResult:
        """
        Call stored routine ``procedure_name``, binding each public attribute
        (or key) of ``parameters`` as a same-named argument::

            executor.execute_procedure("deactivate_driver", {"driver_id": 7})
        """
        if not procedure_name or not procedure_name.strip():
            raise InvalidOperationError("Procedure name must not be blank")
        if not is_procedure_name(procedure_name.strip()):
            raise InvalidOperationError(f"Not a procedure name: {procedure_name!r}")
        return self.execute(procedure_name.strip(), parameters)
