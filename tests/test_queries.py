"""
Tests for query execution and the finance CSV export.
"""

import csv
import io
import pytest
from datetime import date, datetime, timedelta
from decimal import Decimal

from expense_vault.models.expense import (
    Actor,
    Expense,
    ExpenseCategory,
    ExpenseQuery,
    ExpenseState,
    LineItem,
    MemberRole,
)
from expense_vault.queries import QueryExecutor, export_csv
from expense_vault.queries.executor import CSV_HEADERS
from expense_vault.services.storage import InMemoryExpenseStorage
from expense_vault.visibility import ExpenseVisibilityService


ORG = "org-acme"

ALICE = Actor(user_id="alice", organization_id=ORG, role=MemberRole.MEMBER)
CAROL = Actor(user_id="carol", organization_id=ORG, role=MemberRole.ADMIN)


def item(amount, day, description=None, category=None) -> LineItem:
    return LineItem(
        amount=Decimal(amount),
        date=day,
        description=description,
        category=category,
    )


def expense(items, organization_id=ORG, state=ExpenseState.DRAFT,
            user_id="alice", created_offset=0) -> Expense:
    return Expense(
        user_id=user_id,
        organization_id=organization_id,
        state=state,
        manager_ids=["bob"],
        line_items=items,
        total_amount=sum((i.amount for i in items), Decimal("0.00")),
        created_at=datetime(2024, 6, 1) + timedelta(minutes=created_offset),
    )


@pytest.fixture
def seeded():
    """Three org expenses and one vault expense for alice."""
    storage = InMemoryExpenseStorage()
    expenses = [
        expense(
            [item("30.00", date(2024, 3, 4), "Client dinner", ExpenseCategory.MEALS),
             item("12.50", date(2024, 3, 5), "Taxi home", ExpenseCategory.TRANSPORT)],
            state=ExpenseState.APPROVED,
            created_offset=1,
        ),
        expense(
            [item("100.00", date(2024, 4, 10), "Flight", ExpenseCategory.TRAVEL)],
            state=ExpenseState.APPROVAL_PENDING,
            created_offset=2,
        ),
        expense(
            [item("9.99", date(2024, 4, 20), "Notebook")],
            created_offset=3,
        ),
        expense(
            [item("45.00", date(2024, 5, 1), "Gym", ExpenseCategory.OTHERS)],
            organization_id=None,
            created_offset=4,
        ),
    ]
    return storage, expenses


async def executor_for(seeded):
    storage, expenses = seeded
    for e in expenses:
        await storage.save_expense(e)
    return QueryExecutor(ExpenseVisibilityService(storage)), expenses


class TestFilters:
    """Scope, state, search and date filters."""

    @pytest.mark.asyncio
    async def test_all_visible_newest_first(self, seeded):
        executor, expenses = await executor_for(seeded)
        result = await executor.execute(ALICE, ExpenseQuery())

        assert result.success is True
        assert result.total == 4
        assert [r["id"] for r in result.results] == [
            str(e.id) for e in reversed(expenses)
        ]
        assert result.query_description == "Listing expenses"

    @pytest.mark.asyncio
    async def test_scope(self, seeded):
        executor, expenses = await executor_for(seeded)

        private = await executor.execute(ALICE, ExpenseQuery(scope="private"))
        assert [r["id"] for r in private.results] == [str(expenses[3].id)]

        org = await executor.execute(ALICE, ExpenseQuery(scope="org"))
        assert org.total == 3

    @pytest.mark.asyncio
    async def test_admin_never_sees_vault(self, seeded):
        executor, _ = await executor_for(seeded)
        result = await executor.execute(CAROL, ExpenseQuery(scope="private"))
        assert result.total == 0
        assert result.results == []

    @pytest.mark.asyncio
    async def test_state(self, seeded):
        executor, expenses = await executor_for(seeded)
        result = await executor.execute(ALICE, ExpenseQuery(state=ExpenseState.APPROVED))
        assert [r["id"] for r in result.results] == [str(expenses[0].id)]
        assert result.query_description == "Listing expenses | state: Approved"

    @pytest.mark.asyncio
    async def test_search_description_and_category(self, seeded):
        executor, expenses = await executor_for(seeded)

        by_description = await executor.execute(ALICE, ExpenseQuery(search="TAXI"))
        assert [r["id"] for r in by_description.results] == [str(expenses[0].id)]

        by_category = await executor.execute(ALICE, ExpenseQuery(search="travel"))
        assert [r["id"] for r in by_category.results] == [str(expenses[1].id)]

    @pytest.mark.asyncio
    async def test_date_range_matches_any_line_item(self, seeded):
        executor, expenses = await executor_for(seeded)
        query = ExpenseQuery(date_from=date(2024, 3, 5), date_to=date(2024, 4, 10))
        result = await executor.execute(ALICE, query)

        assert {r["id"] for r in result.results} == {
            str(expenses[0].id), str(expenses[1].id)
        }
        assert result.query_description.endswith("from Mar to Apr 2024")

    @pytest.mark.asyncio
    async def test_inverted_date_range_fails_cleanly(self, seeded):
        executor, _ = await executor_for(seeded)
        query = ExpenseQuery(date_from=date(2024, 5, 1), date_to=date(2024, 4, 1))
        result = await executor.execute(ALICE, query)

        assert result.success is False
        assert "date_from" in result.error_message
        assert result.total == 0


class TestPagination:
    """Page slicing."""

    @pytest.mark.asyncio
    async def test_pages(self, seeded):
        executor, expenses = await executor_for(seeded)

        first = await executor.execute(ALICE, ExpenseQuery(limit=3))
        assert first.total == 4
        assert first.total_pages == 2
        assert len(first.results) == 3

        second = await executor.execute(ALICE, ExpenseQuery(limit=3, page=2))
        assert [r["id"] for r in second.results] == [str(expenses[0].id)]

    @pytest.mark.asyncio
    async def test_page_past_the_end(self, seeded):
        executor, _ = await executor_for(seeded)
        result = await executor.execute(ALICE, ExpenseQuery(limit=3, page=5))
        assert result.success is True
        assert result.results == []
        assert result.total == 4


class TestAggregation:
    """Totals and breakdowns cover every match, not just one page."""

    @pytest.mark.asyncio
    async def test_sum_ignores_pagination(self, seeded):
        executor, _ = await executor_for(seeded)
        result = await executor.execute(
            ALICE, ExpenseQuery(aggregation_type="sum", limit=1)
        )
        assert result.aggregation_result == {
            "total_amount": "197.49",
            "count": 4,
            "expense_count": 4,
        }

    @pytest.mark.asyncio
    async def test_average(self, seeded):
        executor, _ = await executor_for(seeded)
        result = await executor.execute(
            ALICE, ExpenseQuery(aggregation_type="average", scope="org")
        )
        assert result.aggregation_result["average_amount"] == "50.83"
        assert result.aggregation_result["count"] == 3

    @pytest.mark.asyncio
    async def test_group_by_state(self, seeded):
        executor, _ = await executor_for(seeded)
        result = await executor.execute(ALICE, ExpenseQuery(group_by="state"))
        breakdown = result.aggregation_result["breakdown"]

        assert breakdown["Draft"] == {"total_amount": "54.99", "count": 2}
        assert breakdown["Approved"] == {"total_amount": "42.50", "count": 1}

    @pytest.mark.asyncio
    async def test_group_by_category_uses_line_items(self, seeded):
        executor, _ = await executor_for(seeded)
        result = await executor.execute(
            ALICE, ExpenseQuery(group_by="category", aggregation_type="count")
        )
        breakdown = result.aggregation_result["breakdown"]

        assert breakdown["Meals"] == {"count": 1}
        assert breakdown["Transport"] == {"count": 1}
        assert breakdown["Uncategorized"] == {"count": 1}
        assert list(breakdown) == sorted(breakdown)

    @pytest.mark.asyncio
    async def test_group_by_month(self, seeded):
        executor, _ = await executor_for(seeded)
        result = await executor.execute(ALICE, ExpenseQuery(group_by="month"))
        breakdown = result.aggregation_result["breakdown"]

        assert breakdown["2024-03"] == {"total_amount": "42.50", "count": 2}
        assert breakdown["2024-04"] == {"total_amount": "109.99", "count": 2}


class TestExportCsv:
    """export_csv."""

    def test_one_row_per_line_item(self):
        approved = expense(
            [item("30.00", date(2024, 3, 4), "Client dinner", ExpenseCategory.MEALS),
             item("12.50", date(2024, 3, 5), "Taxi, \"late\"")],
            state=ExpenseState.APPROVED,
        )
        text = export_csv([approved], employee_names={"alice": "Alice Doe"})
        rows = list(csv.reader(io.StringIO(text)))

        assert rows[0] == CSV_HEADERS
        assert len(rows) == 3
        assert rows[1] == [
            str(approved.id), "Client dinner", "Alice Doe", ORG, "Approved",
            "2024-03-04", "Meals", "Client dinner", "30.00", "42.50",
        ]
        assert rows[2][6] == ""
        assert rows[2][7] == "Taxi, \"late\""

    def test_every_field_is_quoted(self):
        text = export_csv([expense([item("5.00", date(2024, 1, 1), "Pens")])])
        data_line = text.split("\n")[1]
        assert data_line.startswith('"') and data_line.endswith('"')
        assert '"alice"' in data_line

    def test_expense_without_line_items(self):
        draft = Expense(user_id="alice", organization_id=ORG)
        rows = list(csv.reader(io.StringIO(export_csv([draft]))))
        assert len(rows) == 2
        assert rows[1][5:] == ["", "", "", "", "0.00"]

    def test_empty_export_has_header(self):
        assert export_csv([]) == ",".join(f'"{h}"' for h in CSV_HEADERS) + "\n"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
