# IMPORT CONSTRAINT: types/ modules must only import from typing, stdlib, and each other.
# NEVER import from report.py, workflow.py, or any collaborator module; this prevents circular imports.
"""Typed return-value contracts for bugflow."""

from __future__ import annotations

from bugflow.types.core import (
    ISOTimestamp,
    MemberRecord,
    ProjectConfig,
    ReportDict,
    TransitionInfo,
)

__all__ = [
    "ISOTimestamp",
    "MemberRecord",
    "ProjectConfig",
    "ReportDict",
    "TransitionInfo",
]
