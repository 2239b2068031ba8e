"""Input checks shared by the engine, the member directory, and the CLI.

Usernames are login handles: they appear on the command line (``--actor``),
in log records, and as primary keys in the members and assignments tables,
so they are kept to a narrow, printable alphabet.
"""

from __future__ import annotations

import unicodedata
from typing import Any

from bugflow.errors import InvalidUsernameError

MAX_USERNAME_LENGTH = 64
USERNAME_PUNCTUATION = frozenset("._-")


def normalize_username(value: Any) -> str:
    """Return the canonical form of a login handle.

    Surrounding whitespace is dropped and the result is NFC-normalized, so
    ``" dev"`` and a decomposed ``"cafe\\u0301"`` name the same member as
    ``"dev"`` and ``"café"``. The handle must start with a letter or digit and
    may otherwise contain letters, digits, ``.``, ``_`` and ``-``.

    Raises:
        InvalidUsernameError: the value cannot be a username.
    """
    if not isinstance(value, str):
        raise InvalidUsernameError(value, "must be a string")
    cleaned = unicodedata.normalize("NFC", value.strip())
    if not cleaned:
        raise InvalidUsernameError(value, "cannot be empty")
    if len(cleaned) > MAX_USERNAME_LENGTH:
        raise InvalidUsernameError(value, f"must be at most {MAX_USERNAME_LENGTH} characters")
    if not cleaned[0].isalnum():
        raise InvalidUsernameError(value, "must start with a letter or digit")
    for ch in cleaned:
        if not ch.isalnum() and ch not in USERNAME_PUNCTUATION:
            raise InvalidUsernameError(value, f"character U+{ord(ch):04X} is not allowed; use letters, digits, '.', '_' or '-'")
    return cleaned


def is_blank(value: Any) -> bool:
    """True for None, non-strings, empty strings, and whitespace-only strings."""
    return not isinstance(value, str) or not value.strip()
