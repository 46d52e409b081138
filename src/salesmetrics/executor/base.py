"""The executor interface the engines depend on."""

from typing import Any, Protocol, runtime_checkable

from salesmetrics.models.request import QueryResult


@runtime_checkable
class QueryExecutor(Protocol):
    """Anything that can run a parameterized statement.

    implementations must be safe to call from several threads at once - the
    batch runners fan queries out over a thread pool.
    """

    def execute(self, sql: str, params: list[Any] | None = None) -> QueryResult: ...
