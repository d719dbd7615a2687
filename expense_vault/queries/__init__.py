"""Query execution package."""

from expense_vault.queries.executor import (
    QueryExecutionError,
    QueryExecutor,
    export_csv,
)

__all__ = ["QueryExecutionError", "QueryExecutor", "export_csv"]
