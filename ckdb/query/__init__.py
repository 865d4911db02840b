from .builder import QueryBuilder
from .query import BatchQueryResult, Query

__all__ = ["BatchQueryResult", "Query", "QueryBuilder"]
