"""
Shared fixtures for the Expense Vault tests.

Everything runs in memory; no test touches Google Sheets.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

import pytest

from expense_vault.audit import AuditLogger
from expense_vault.models.expense import (
    Actor,
    ExpenseCategory,
    LineItem,
    MemberRole,
)
from expense_vault.orchestrator import ExpenseWorkflow
from expense_vault.organizations import InMemoryOrganizationDirectory
from expense_vault.services.storage import (
    InMemoryAuditStorage,
    InMemoryExpenseStorage,
)


ORG_ID = "org-acme"
OTHER_ORG_ID = "org-globex"


def make_line_item(
    amount: str = "25.00",
    days_ago: int = 1,
    description: Optional[str] = "Team lunch",
    category: Optional[ExpenseCategory] = ExpenseCategory.MEALS,
) -> LineItem:
    return LineItem(
        amount=Decimal(amount),
        date=date.today() - timedelta(days=days_ago),
        description=description,
        category=category,
    )


@pytest.fixture
def line_item():
    return make_line_item


@pytest.fixture
def directory():
    """Acme: alice and dave (members), bob and carol (admins), olivia (owner)."""
    directory = InMemoryOrganizationDirectory()
    directory.add_member(ORG_ID, "alice", MemberRole.MEMBER, name="Alice Doe")
    directory.add_member(ORG_ID, "bob", MemberRole.ADMIN, name="Bob Roe")
    directory.add_member(ORG_ID, "carol", MemberRole.ADMIN, name="Carol Poe")
    directory.add_member(ORG_ID, "olivia", MemberRole.OWNER, name="Olivia Moe")
    directory.add_member(ORG_ID, "dave", MemberRole.MEMBER, name="Dave Coe")
    directory.add_member(OTHER_ORG_ID, "gina", MemberRole.ADMIN, name="Gina Loe")
    return directory


@pytest.fixture
def expense_storage():
    return InMemoryExpenseStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def workflow(expense_storage, directory, audit_storage):
    return ExpenseWorkflow(
        expense_storage=expense_storage,
        directory=directory,
        audit_logger=AuditLogger(audit_storage),
    )


@pytest.fixture
def alice():
    return Actor(user_id="alice", organization_id=ORG_ID, role=MemberRole.MEMBER)


@pytest.fixture
def alice_vault():
    return Actor(user_id="alice")


@pytest.fixture
def bob():
    return Actor(user_id="bob", organization_id=ORG_ID, role=MemberRole.ADMIN)


@pytest.fixture
def dave():
    return Actor(user_id="dave", organization_id=ORG_ID, role=MemberRole.MEMBER)


@pytest.fixture
def carol():
    return Actor(user_id="carol", organization_id=ORG_ID, role=MemberRole.ADMIN)


@pytest.fixture
def olivia():
    return Actor(user_id="olivia", organization_id=ORG_ID, role=MemberRole.OWNER)


@pytest.fixture
def gina():
    return Actor(user_id="gina", organization_id=OTHER_ORG_ID, role=MemberRole.ADMIN)
