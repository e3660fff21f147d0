from fkslice.adapters.base import DataSource
from fkslice.adapters.postgresql import PostgreSQLSource

__all__ = [
    "DataSource",
    "PostgreSQLSource",
]
