"""Principals, roles and access levels used for retrieval filtering and ingestion tagging."""

from enum import Enum

from pydantic import BaseModel

from shared.exceptions.errors import InvalidInput


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"
    DEVELOPER = "developer"
    SALES = "sales"

    @classmethod
    def parse(cls, raw: str) -> "Role":
        """Parse a role name case-insensitively.

        Raises:
            InvalidInput: If the name is not a known role.
        """
        try:
            return cls(raw.strip().lower())
        except ValueError:
            raise InvalidInput(f"Unknown role '{raw}'.")

    @classmethod
    def parse_list(cls, raw: str | None) -> list["Role"]:
        """Parse a comma separated role list, dropping blanks and duplicates while keeping order."""
        roles: list[Role] = []
        for part in (raw or "").split(","):
            if not part.strip():
                continue
            role = cls.parse(part)
            if role not in roles:
                roles.append(role)
        return roles


class Principal(BaseModel):
    """The authenticated caller as resolved by the upstream gateway."""

    id: str
    role: Role | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class AccessLevel(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    ROLES = "roles"


class AccessRequest(BaseModel):
    """Visibility requested for an upload. ``roles`` is only meaningful for AccessLevel.ROLES."""

    level: AccessLevel = AccessLevel.PRIVATE
    roles: list[Role] = []


class QueryMode(BaseModel):
    """Retrieval mode: default (latest shared versions plus own private docs) or one explicit shared version."""

    source: str | None = None
    version: int | None = None

    @property
    def is_explicit(self) -> bool:
        return self.source is not None and self.version is not None

    @classmethod
    def from_request(cls, source: str | None, version: str | int | None) -> "QueryMode":
        """Build the mode from optional request fields.

        Both fields must be given together; the version must be a positive integer.

        Raises:
            InvalidInput: On a half-specified or malformed version selection.
        """
        source = source.strip() if isinstance(source, str) else source
        has_version = version is not None and str(version).strip() != ""
        if not source and not has_version:
            return cls()
        if not source or not has_version:
            raise InvalidInput("Both source and version are required to query a specific document version.")
        try:
            parsed = int(str(version).strip())
        except ValueError:
            raise InvalidInput(f"Invalid document version '{version}'.")
        if parsed < 1:
            raise InvalidInput(f"Invalid document version '{version}'.")
        return cls(source=source, version=parsed)
