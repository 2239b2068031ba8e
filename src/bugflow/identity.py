"""Member registry and login bookkeeping.

The workflow engine only needs two questions answered about an actor: is
this user logged in, and what role do they hold. ``IdentityProvider`` is that
contract; ``MemberDirectory`` is the in-process implementation used by the CLI
and the tests.

Credentials are kept as Argon2id hashes (argon2-cffi). The logged-in set lives
only in memory and is never persisted; registered members are persisted
through an optional ``MemberStore``.
"""

from __future__ import annotations

import logging
from typing import Literal, Protocol

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

from bugflow.errors import (
    AuthenticationFailedError,
    DuplicateUserError,
    NotLoggedInError,
    UnknownUserError,
    ValidationError,
)
from bugflow.types.core import MemberRecord
from bugflow.validation import normalize_username

logger = logging.getLogger(__name__)

Role = Literal["system_analyst", "quality_assurance", "developer", "user"]

SYSTEM_ANALYST: Role = "system_analyst"
QUALITY_ASSURANCE: Role = "quality_assurance"
DEVELOPER: Role = "developer"
USER: Role = "user"

ROLES: tuple[Role, ...] = (SYSTEM_ANALYST, QUALITY_ASSURANCE, DEVELOPER, USER)
VALID_ROLES: frozenset[str] = frozenset(ROLES)

# Argon2id cost parameters; memory is in KiB.
DEFAULT_HASH_TIME_COST = 3
DEFAULT_HASH_MEMORY_COST = 65536
HASH_PARALLELISM = 4


class IdentityProvider(Protocol):
    """What the workflow engine asks about an actor."""

    def role_of(self, username: str) -> Role: ...

    def is_authenticated(self, username: str) -> bool: ...


class MemberStore(Protocol):
    """Durable storage for registered members."""

    def save_member(self, record: MemberRecord) -> None: ...

    def load_members(self) -> list[MemberRecord]: ...


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def make_hasher(
    *,
    time_cost: int = DEFAULT_HASH_TIME_COST,
    memory_cost: int = DEFAULT_HASH_MEMORY_COST,
) -> PasswordHasher:
    """Argon2id hasher with the given costs. *memory_cost* must be at least 32 KiB."""
    return PasswordHasher(
        time_cost=time_cost,
        memory_cost=memory_cost,
        parallelism=HASH_PARALLELISM,
        hash_len=32,
        salt_len=16,
    )


def hash_password(password: str, hasher: PasswordHasher) -> str:
    """Return the encoded ``$argon2id$...`` hash; salt and costs are embedded in it."""
    return hasher.hash(password)


def verify_password(password: str, encoded: str, hasher: PasswordHasher) -> bool:
    """Check *password* against an encoded hash, using the costs stored in the hash."""
    try:
        return hasher.verify(encoded, password)
    except InvalidHashError:
        logger.warning("Malformed password hash, refusing login")
        return False
    except VerificationError:
        return False


# ---------------------------------------------------------------------------
# MemberDirectory
# ---------------------------------------------------------------------------


class MemberDirectory:
    """Registered members plus the set of currently logged-in usernames."""

    def __init__(
        self,
        *,
        store: MemberStore | None = None,
        hasher: PasswordHasher | None = None,
    ) -> None:
        self._store = store
        self._hasher = hasher if hasher is not None else make_hasher()
        self._members: dict[str, MemberRecord] = {}
        self._logged_in: set[str] = set()
        if store is not None:
            for record in store.load_members():
                self._members[record["username"]] = record
            logger.debug("Loaded %d members", len(self._members))

    # -- Registration --------------------------------------------------------

    def register(self, username: str, password: str, role: str) -> None:
        """Add a member.

        Raises:
            ValidationError: bad username, empty password, or unknown role.
            DuplicateUserError: the username is already registered.
        """
        cleaned = self._clean(username)
        if not isinstance(password, str) or not password:
            msg = "Password cannot be empty"
            raise ValidationError(msg)
        if role not in VALID_ROLES:
            msg = f"Unknown role '{role}'. Valid roles: {', '.join(ROLES)}"
            raise ValidationError(msg)
        if cleaned in self._members:
            raise DuplicateUserError(cleaned)

        record = MemberRecord(
            username=cleaned,
            role=role,
            password_hash=hash_password(password, self._hasher),
        )
        if self._store is not None:
            self._store.save_member(record)
        self._members[cleaned] = record
        logger.info("member_registered", extra={"actor": cleaned, "operation": "register"})

    def is_registered(self, username: str) -> bool:
        return username in self._members

    # -- Sessions ------------------------------------------------------------

    def login(self, username: str, password: str) -> None:
        """Log *username* in. Logging in again with valid credentials is a no-op."""
        cleaned = self._clean(username)
        record = self._members.get(cleaned)
        if record is None or not isinstance(password, str) or not verify_password(password, record["password_hash"], self._hasher):
            logger.debug("Login rejected for '%s'", cleaned)
            raise AuthenticationFailedError(cleaned)
        self._logged_in.add(cleaned)
        logger.debug("Logged in '%s'", cleaned)

    def logout(self, username: str) -> None:
        cleaned = self._clean(username)
        if cleaned not in self._logged_in:
            raise NotLoggedInError(cleaned)
        self._logged_in.discard(cleaned)
        logger.debug("Logged out '%s'", cleaned)

    def logged_in(self) -> frozenset[str]:
        return frozenset(self._logged_in)

    # -- IdentityProvider ----------------------------------------------------

    def role_of(self, username: str) -> Role:
        record = self._members.get(username)
        if record is None:
            raise UnknownUserError(username)
        role: Role = record["role"]  # type: ignore[assignment]  # validated in register()
        return role

    def is_authenticated(self, username: str) -> bool:
        return username in self._logged_in

    @staticmethod
    def _clean(username: str) -> str:
        return normalize_username(username)
