"""Foundational TypedDicts for dataclass to_dict() returns and on-disk shapes."""

from __future__ import annotations

from typing import NewType, TypedDict

ISOTimestamp = NewType("ISOTimestamp", str)


class ProjectConfig(TypedDict, total=False):
    """Shape of .bugflow/config.json."""

    version: int
    persistence: bool
    hash_time_cost: int
    hash_memory_cost: int  # KiB


class ReportDict(TypedDict):
    id: int
    description: str
    state: str
    resolution: str
    resolution_note: str
    created_at: ISOTimestamp
    updated_at: ISOTimestamp


class MemberRecord(TypedDict):
    """A registered member as handed to and from the member store."""

    username: str
    role: str
    password_hash: str


# TransitionInfo uses "from" as a key (a Python keyword), so it needs the functional form.
TransitionInfo = TypedDict("TransitionInfo", {"from": str, "to": str, "operation": str})
