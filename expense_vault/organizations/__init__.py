"""Organization membership package."""

from expense_vault.organizations.directory import (
    InMemoryOrganizationDirectory,
    Member,
    OrganizationDirectoryInterface,
    eligible_managers,
    resolve_actor,
    verify_permission,
)

__all__ = [
    "InMemoryOrganizationDirectory",
    "Member",
    "OrganizationDirectoryInterface",
    "eligible_managers",
    "resolve_actor",
    "verify_permission",
]
