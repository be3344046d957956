"""
Pydantic models for diff results.

This module provides data models for:
- File-level changes between two trees or refs
- Line-level entries of a rendered file diff
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class DiffChangeType(str, Enum):
    """Type of change for a file in a diff."""

    ADDED = "added"
    DELETED = "deleted"
    MODIFIED = "modified"
    RENAMED = "renamed"
    COPIED = "copied"
    TYPE_CHANGED = "type_changed"
    UNMODIFIED = "unmodified"


class DiffEntry(BaseModel):
    """A single file change."""

    file_path: str = Field(..., description="Path of the file, relative to the root")
    old_path: Optional[str] = Field(
        default=None, description="Previous path for renames and copies"
    )
    change_type: DiffChangeType = Field(..., description="Kind of change")
    lines_added: int = Field(default=0, ge=0)
    lines_deleted: int = Field(default=0, ge=0)
    patch: Optional[str] = Field(default=None, description="Unified diff text, if available")


class DiffLineType(str, Enum):
    """Type of a line in a rendered file diff."""

    UNCHANGED = "unchanged"
    ADDED = "added"
    DELETED = "deleted"
    HEADER = "header"


class DiffLine(BaseModel):
    """A line of a rendered file diff."""

    old_line_number: Optional[int] = Field(
        default=None, description="Line number in the old file, None for added lines"
    )
    new_line_number: Optional[int] = Field(
        default=None, description="Line number in the new file, None for deleted lines"
    )
    content: str = ""
    type: DiffLineType = DiffLineType.UNCHANGED

    @property
    def prefix(self) -> str:
        if self.type == DiffLineType.ADDED:
            return "+"
        if self.type == DiffLineType.DELETED:
            return "-"
        if self.type == DiffLineType.HEADER:
            return ""
        return " "
