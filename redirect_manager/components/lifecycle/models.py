"""
Lifecycle component models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from redirect_manager.components.redirects import RedirectRule, RedirectValidationError


class LifecycleAction(str, Enum):
    """What the after-save hook did."""

    NONE = "none"
    SKIPPED = "skipped"
    UNDO = "undo"
    CREATED = "created"
    LOOP_BLOCKED = "loop_blocked"
    REJECTED = "rejected"


@dataclass(frozen=True)
class LifecycleOutcome:
    """Result of processing one content save."""

    action: LifecycleAction
    rule: RedirectRule | None = None
    deleted_rule_ids: tuple[int, ...] = ()
    errors: list[RedirectValidationError] = field(default_factory=list)
    notices: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors
