from __future__ import annotations

from dataclasses import dataclass, field

from app.bookkeeping.errors import BookkeepingError, ErrorCode


ROLE_ADMIN = "admin"
ROLE_ACCOUNTANT = "accountant"
ROLE_VIEWER = "viewer"

READ_ROLES = frozenset({ROLE_ADMIN, ROLE_ACCOUNTANT, ROLE_VIEWER})
POSTING_ROLES = frozenset({ROLE_ADMIN, ROLE_ACCOUNTANT})
ADMIN_ROLES = frozenset({ROLE_ADMIN})


@dataclass(slots=True)
class BookkeepingContext:
    """Who is calling, and for which organization. Every query is scoped by `organization_id`."""

    organization_id: str
    user_id: str
    roles: list[str] = field(default_factory=list)
    correlation_id: str | None = None

    def has_any_role(self, allowed: frozenset[str]) -> bool:
        return any(role.lower() in allowed for role in self.roles)

    def require_any_role(self, allowed: frozenset[str]) -> None:
        if not self.has_any_role(allowed):
            raise BookkeepingError(
                ErrorCode.FORBIDDEN,
                f"requires one of roles: {', '.join(sorted(allowed))}",
            )
