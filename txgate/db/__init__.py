from .catalog import QUERY_CATALOG, NamedQuery, QueryArityError, UnknownQueryError, named_query
from .database import Database, Row, Transaction

__all__ = [
    "Database",
    "NamedQuery",
    "QUERY_CATALOG",
    "QueryArityError",
    "Row",
    "Transaction",
    "UnknownQueryError",
    "named_query",
]
