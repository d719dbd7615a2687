"""
Organization Membership and Permissions

DESIGN DECISION: Membership lives behind an async directory interface,
like storage. The workflow never trusts a role passed in by the caller
for organization decisions; it resolves the actor from the directory.

Role hierarchy for permission checks:
- owner  -> owner only
- admin  -> admin or owner
- member -> any membership
- employee -> every authenticated user, no organization needed

Only admins and owners are eligible to review an organization expense.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Union

import structlog
from pydantic import BaseModel, Field, field_validator

from expense_vault.models.expense import Actor, MemberRole
from expense_vault.workflow.errors import ForbiddenError


logger = structlog.get_logger(__name__)


class Member(BaseModel):
    """A user's membership in one organization."""

    organization_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    role: MemberRole = MemberRole.MEMBER
    name: Optional[str] = None
    email: Optional[str] = None
    joined_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: MemberRole) -> MemberRole:
        """Employee is implicit and never stored as a membership."""
        if v == MemberRole.EMPLOYEE:
            raise ValueError("Membership role must be owner, admin or member")
        return v


class OrganizationDirectoryInterface(ABC):
    """Abstract interface for organization membership lookups."""

    @abstractmethod
    async def find_member(
        self,
        organization_id: str,
        user_id: str,
    ) -> Optional[Member]:
        """Membership of user in organization, or None."""
        pass

    @abstractmethod
    async def members(self, organization_id: str) -> list[Member]:
        """All members of an organization."""
        pass

    @abstractmethod
    async def memberships(self, user_id: str) -> list[Member]:
        """All organizations a user belongs to."""
        pass


class InMemoryOrganizationDirectory(OrganizationDirectoryInterface):
    """Dict-backed directory for tests and local use."""

    def __init__(self):
        self._members: dict[tuple[str, str], Member] = {}

    def add_member(
        self,
        organization_id: str,
        user_id: str,
        role: MemberRole = MemberRole.MEMBER,
        name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Member:
        """Add or replace a membership."""
        member = Member(
            organization_id=organization_id,
            user_id=user_id,
            role=role,
            name=name,
            email=email,
        )
        self._members[(organization_id, user_id)] = member
        return member

    def remove_member(self, organization_id: str, user_id: str) -> bool:
        return self._members.pop((organization_id, user_id), None) is not None

    async def find_member(
        self,
        organization_id: str,
        user_id: str,
    ) -> Optional[Member]:
        return self._members.get((organization_id, user_id))

    async def members(self, organization_id: str) -> list[Member]:
        return [
            m for (org_id, _), m in self._members.items()
            if org_id == organization_id
        ]

    async def memberships(self, user_id: str) -> list[Member]:
        return [
            m for (_, member_user_id), m in self._members.items()
            if member_user_id == user_id
        ]


async def verify_permission(
    directory: OrganizationDirectoryInterface,
    user_id: str,
    required_role: Union[MemberRole, str],
    organization_id: Optional[str] = None,
) -> bool:
    """
    Check a user holds at least the required role.

    Organization roles need an organization_id; unknown roles are refused.
    """
    try:
        role = MemberRole(required_role)
    except ValueError:
        logger.warning("unknown_role_checked", user_id=user_id, role=str(required_role))
        return False

    if role == MemberRole.EMPLOYEE:
        return True

    if not organization_id:
        return False

    member = await directory.find_member(organization_id, user_id)
    if member is None:
        return False

    if role == MemberRole.OWNER:
        return member.role == MemberRole.OWNER
    if role == MemberRole.ADMIN:
        return member.role in (MemberRole.ADMIN, MemberRole.OWNER)
    return True


async def resolve_actor(
    directory: OrganizationDirectoryInterface,
    user_id: str,
    organization_id: Optional[str] = None,
) -> Actor:
    """
    Build the Actor for a user acting in an organization context.

    Raises:
        ForbiddenError: If the user is not a member of the organization
    """
    if not organization_id:
        return Actor(user_id=user_id, role=MemberRole.EMPLOYEE)

    member = await directory.find_member(organization_id, user_id)
    if member is None:
        raise ForbiddenError(
            "You are not a member of this organization",
            details={"organization_id": organization_id},
        )
    return Actor(
        user_id=user_id,
        organization_id=organization_id,
        role=member.role,
    )


async def eligible_managers(
    directory: OrganizationDirectoryInterface,
    organization_id: str,
    exclude_user_id: Optional[str] = None,
) -> list[Member]:
    """Admins and owners of the organization, who may review its expenses."""
    members = await directory.members(organization_id)
    return [
        m for m in members
        if m.role in (MemberRole.ADMIN, MemberRole.OWNER)
        and m.user_id != exclude_user_id
    ]
