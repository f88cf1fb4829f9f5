"""Read-side spending projections."""

from expense_recorder.queries.executor import SpendingQueryExecutor

__all__ = ["SpendingQueryExecutor"]
