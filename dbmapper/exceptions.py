"""Exceptions raised by dbmapper. Driver errors from psycopg2 are not wrapped."""


class DbMapperError(Exception):
    """Base class for dbmapper errors."""


class InvalidOperationError(DbMapperError, ValueError):
    """The call cannot be executed (empty input, blank statement text, ...)."""


class MappingError(DbMapperError):
    """A model does not map onto the table or result set it is used with."""


class MissingPrimaryKeyError(MappingError):
    """Update/delete on a model without a primary-key column."""


class ConfigurationError(DbMapperError):
    """The connection configuration is incomplete or unreadable."""
