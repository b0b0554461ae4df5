"""
Label and assignee filters applied to remote items before reconciliation.

Both filters are disabled by default. When enabled, the label filter runs
first and the assignee filter narrows its output.
"""

import logging
from collections.abc import Sequence
from typing import TypeVar

from .config import (
    AssigneeFilter,
    AssigneeFilterMode,
    EffectivePolicy,
    LabelFilter,
    LabelFilterMode,
)
from .models import RemoteItemBase

logger = logging.getLogger(__name__)

ItemT = TypeVar("ItemT", bound=RemoteItemBase)


def apply_label_filter(items: Sequence[ItemT], label_filter: LabelFilter) -> list[ItemT]:
    """
    Filter items by label.

    ``include`` keeps items carrying at least one listed label; items
    without labels are dropped. ``exclude`` drops items carrying any listed
    label; items without labels are kept. A disabled filter or an empty
    label list passes everything through.
    """
    if not label_filter.enabled or not label_filter.labels:
        return list(items)

    wanted = set(label_filter.labels)
    if label_filter.mode == LabelFilterMode.INCLUDE:
        return [item for item in items if wanted.intersection(item.label_names)]
    return [item for item in items if not wanted.intersection(item.label_names)]


def apply_assignee_filter(
    items: Sequence[ItemT],
    assignee_filter: AssigneeFilter,
    current_user: str | None = None,
) -> list[ItemT]:
    """
    Filter items by assignment.

    Args:
        items: Items to filter
        assignee_filter: Filter settings
        current_user: Login of the authenticated user, for ``assigned-to-me``

    Returns:
        Items that pass the filter
    """
    if not assignee_filter.enabled:
        return list(items)

    mode = assignee_filter.mode

    if mode == AssigneeFilterMode.ASSIGNED_TO_ME:
        if not current_user:
            logger.warning("Assignee filter 'assigned-to-me' needs the current user; nothing kept")
            return []
        return [item for item in items if current_user in item.assignee_logins]

    if mode == AssigneeFilterMode.ASSIGNED_TO_SPECIFIC:
        if not assignee_filter.users:
            return list(items)
        wanted = set(assignee_filter.users)
        return [item for item in items if wanted.intersection(item.assignee_logins)]

    if mode == AssigneeFilterMode.UNASSIGNED:
        return [item for item in items if not item.assignees]

    return [item for item in items if item.assignees]


def filter_items(
    items: Sequence[ItemT],
    policy: EffectivePolicy,
    current_user: str | None = None,
) -> list[ItemT]:
    """Apply the label filter, then the assignee filter, of a policy."""
    kept = apply_label_filter(items, policy.label_filter)
    kept = apply_assignee_filter(kept, policy.assignee_filter, current_user)
    if len(kept) != len(items):
        logger.debug(
            f"{policy.repository}: filters kept {len(kept)} of {len(items)} "
            f"{policy.kind.label}s"
        )
    return kept


def needs_current_user(policy: EffectivePolicy) -> bool:
    """True when a tracked policy filters on the authenticated user."""
    return (
        policy.track
        and policy.assignee_filter.enabled
        and policy.assignee_filter.mode == AssigneeFilterMode.ASSIGNED_TO_ME
    )
