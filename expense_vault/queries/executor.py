"""
Query Execution Engine

DESIGN DECISION: Query execution is DETERMINISTIC and visibility-bound.
The executor only ever reads expenses through the visibility service,
so no combination of filters can widen what an actor is allowed to see.

Filters narrow, aggregations summarize, pagination slices; in that order.
Aggregations always cover every matching expense, not just one page.
"""

import csv
import io
import math
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from expense_vault.models.expense import (
    Actor,
    Expense,
    ExpenseQuery,
    QueryResult,
)
from expense_vault.visibility import ExpenseVisibilityService


UNCATEGORIZED = "Uncategorized"

CSV_HEADERS = [
    "Expense ID",
    "Title",
    "Employee",
    "Organization",
    "State",
    "Date",
    "Category",
    "Description",
    "Amount",
    "Expense Total",
]


class QueryExecutionError(Exception):
    """Error during query execution."""
    pass


class QueryExecutor:
    """
    Executes expense queries for an actor.

    GUARANTEES:
    - Only returns expenses visible to the actor
    - Never estimates; totals are exact Decimal sums
    - Clear empty result if nothing matches
    """

    def __init__(self, visibility: ExpenseVisibilityService):
        self._visibility = visibility

    async def matching_expenses(self, actor: Actor, query: ExpenseQuery) -> list[Expense]:
        """
        Every visible expense matching the query filters, newest first.

        Raises:
            QueryExecutionError: If the date range is inverted
        """
        if query.date_from and query.date_to and query.date_from > query.date_to:
            raise QueryExecutionError("date_from must be on or before date_to")

        expenses = await self._visibility.get_visible_expenses(
            actor,
            include_deleted=query.include_deleted,
            states=[query.state] if query.state else None,
        )
        return [e for e in expenses if self._matches(e, query)]

    async def execute(self, actor: Actor, query: ExpenseQuery) -> QueryResult:
        """Execute a query and return results."""
        try:
            matched = await self.matching_expenses(actor, query)

            aggregation_result = None
            if query.aggregation_type or query.group_by:
                aggregation_result = self._aggregate(
                    matched, query.aggregation_type, query.group_by
                )

            total = len(matched)
            start = (query.page - 1) * query.limit
            page_items = matched[start:start + query.limit]

            return QueryResult(
                query_id=query.query_id,
                success=True,
                total=total,
                page=query.page,
                limit=query.limit,
                total_pages=math.ceil(total / query.limit) if total else 0,
                results=[e.summary() for e in page_items],
                aggregation_result=aggregation_result,
                query_description=self._describe(query),
            )

        except Exception as e:
            return QueryResult(
                query_id=query.query_id,
                success=False,
                error_message=str(e),
                total=0,
                page=query.page,
                limit=query.limit,
                query_description=f"Query failed: {str(e)}",
            )

    def _matches(self, expense: Expense, query: ExpenseQuery) -> bool:
        if query.scope == "private" and not expense.is_private:
            return False
        if query.scope == "org" and expense.is_private:
            return False
        if query.state and expense.state != query.state:
            return False

        if query.date_from or query.date_to:
            dates = [item.date for item in expense.line_items] or [
                expense.created_at.date()
            ]
            if not any(self._in_range(d, query.date_from, query.date_to) for d in dates):
                return False

        if query.search:
            needle = query.search.strip().lower()
            if needle and not any(
                needle in (item.description or "").lower()
                or (item.category and needle in item.category.value.lower())
                for item in expense.line_items
            ):
                return False

        return True

    @staticmethod
    def _in_range(
        value: date,
        date_from: Optional[date],
        date_to: Optional[date],
    ) -> bool:
        if date_from and value < date_from:
            return False
        if date_to and value > date_to:
            return False
        return True

    def _aggregate(
        self,
        expenses: list[Expense],
        aggregation_type: Optional[str],
        group_by: Optional[str],
    ) -> dict:
        """
        Summarize matching expenses.

        Grouping by state uses expense totals; grouping by category or
        month uses line item amounts, since one expense can span several.
        """
        amounts = [e.total_amount for e in expenses]
        result = self._summarize(amounts, aggregation_type)
        result["expense_count"] = len(expenses)

        if group_by:
            groups: dict[str, list[Decimal]] = defaultdict(list)
            for expense in expenses:
                if group_by == "state":
                    groups[expense.state.value].append(expense.total_amount)
                    continue
                for item in expense.line_items:
                    if group_by == "category":
                        key = item.category.value if item.category else UNCATEGORIZED
                    else:
                        key = item.date.strftime("%Y-%m")
                    groups[key].append(item.amount)

            result["breakdown"] = {
                key: self._summarize(values, aggregation_type)
                for key, values in sorted(groups.items())
            }

        return result

    @staticmethod
    def _summarize(amounts: list[Decimal], aggregation_type: Optional[str]) -> dict:
        if aggregation_type == "count":
            return {"count": len(amounts)}
        total = sum(amounts, Decimal("0.00"))
        if aggregation_type == "average":
            average = (total / len(amounts)).quantize(Decimal("0.01")) if amounts else Decimal("0.00")
            return {"average_amount": str(average), "count": len(amounts)}
        # Default to sum
        return {"total_amount": str(total), "count": len(amounts)}

    def _describe(self, query: ExpenseQuery) -> str:
        desc_parts = ["Listing expenses"]
        if query.scope == "private":
            desc_parts.append("personal vault")
        elif query.scope == "org":
            desc_parts.append("organization")
        if query.state:
            desc_parts.append(f"state: {query.state.value}")
        if query.search:
            desc_parts.append(f"matching: {query.search}")
        if query.date_from or query.date_to:
            desc_parts.append(self._date_range_str(query.date_from, query.date_to))
        if query.aggregation_type:
            desc_parts.append(f"{query.aggregation_type}")
        if query.group_by:
            desc_parts.append(f"grouped by {query.group_by}")
        return " | ".join(desc_parts)

    def _date_range_str(
        self,
        date_from: Optional[date],
        date_to: Optional[date],
    ) -> str:
        """Format date range for description."""
        if date_from and date_to:
            if date_from == date_to:
                return f"on {date_from.strftime('%d %b %Y')}"
            elif date_from.month == date_to.month and date_from.year == date_to.year:
                return f"in {date_from.strftime('%B %Y')}"
            elif date_from.year == date_to.year:
                return f"from {date_from.strftime('%b')} to {date_to.strftime('%b %Y')}"
            else:
                return f"from {date_from.strftime('%b %Y')} to {date_to.strftime('%b %Y')}"
        elif date_from:
            return f"from {date_from.strftime('%d %b %Y')}"
        elif date_to:
            return f"until {date_to.strftime('%d %b %Y')}"
        return ""


def export_csv(
    expenses: Iterable[Expense],
    employee_names: Optional[dict[str, str]] = None,
) -> str:
    """
    Render expenses as CSV for finance, one row per line item.

    Expenses without line items still get one row with empty item columns.
    employee_names maps user ids to display names; ids are used otherwise.
    """
    employee_names = employee_names or {}
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)

    for expense in expenses:
        head = [
            str(expense.id),
            expense.title,
            employee_names.get(expense.user_id, expense.user_id),
            expense.organization_id or "",
            expense.state.value,
        ]
        if not expense.line_items:
            writer.writerow(head + ["", "", "", "", str(expense.total_amount)])
            continue
        for item in expense.line_items:
            writer.writerow(head + [
                item.date.isoformat(),
                item.category.value if item.category else "",
                item.description or "",
                str(item.amount),
                str(expense.total_amount),
            ])

    return buffer.getvalue()
