# app/core/xp_config.py
"""
XP configuration: sources, activity buckets, amounts, caps and milestones.

Every source maps to exactly one activity bucket. Adding a source means adding
it to ``XpSource`` and to ``SOURCE_ACTIVITY``; there is no catch-all.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Tuple, Union


class XpSource(str, Enum):
    POST = "post"
    COMMENT = "comment"
    BOOKMARK = "bookmark"
    BOOKMARK_RECEIVED = "bookmark_received"
    COMMENT_RECEIVED = "comment_received"
    REACTION_RECEIVED = "reaction_received"
    DAILY_LOGIN = "daily_login"
    PROFILE = "profile"
    SHELF = "shelf"
    SYSTEM = "system"


class ActivityType(str, Enum):
    POSTS = "posts"
    COMMENTS = "comments"
    RECEIVED_INTERACTIONS = "received_interactions"
    GENERAL = "general"


SOURCE_ACTIVITY: Dict[XpSource, ActivityType] = {
    XpSource.POST: ActivityType.POSTS,
    XpSource.COMMENT: ActivityType.COMMENTS,
    XpSource.BOOKMARK_RECEIVED: ActivityType.RECEIVED_INTERACTIONS,
    XpSource.COMMENT_RECEIVED: ActivityType.RECEIVED_INTERACTIONS,
    XpSource.REACTION_RECEIVED: ActivityType.RECEIVED_INTERACTIONS,
    XpSource.BOOKMARK: ActivityType.GENERAL,
    XpSource.DAILY_LOGIN: ActivityType.GENERAL,
    XpSource.PROFILE: ActivityType.GENERAL,
    XpSource.SHELF: ActivityType.GENERAL,
    XpSource.SYSTEM: ActivityType.GENERAL,
}

# Daily XP caps per activity bucket
DAILY_XP_CAPS: Dict[ActivityType, int] = {
    ActivityType.POSTS: 100,
    ActivityType.COMMENTS: 50,
    ActivityType.RECEIVED_INTERACTIONS: 100,
    ActivityType.GENERAL: 500,
}

# Base XP per action: (amount, source, reason)
XP_VALUES: Dict[str, Tuple[int, XpSource, str]] = {
    "create_post": (10, XpSource.POST, "Create Post"),
    "create_quality_post": (25, XpSource.POST, "Create Quality Post"),
    "bookmark_received": (5, XpSource.BOOKMARK_RECEIVED, "Bookmark Received"),
    "comment_received": (3, XpSource.COMMENT_RECEIVED, "Comment Received"),
    "comment_created": (2, XpSource.COMMENT, "Comment Created"),
    "daily_login": (5, XpSource.DAILY_LOGIN, "Daily Login"),
    "complete_profile": (20, XpSource.PROFILE, "Complete Profile"),
    "shelf_curation": (10, XpSource.SHELF, "Shelf Curation"),
}

XP_MILESTONES: Tuple[int, ...] = (100, 500, 1000, 2500, 5000, 10000, 25000, 50000)
MILESTONE_BONUS_PERCENT = 5
MILESTONE_NOTIFICATION_TYPE = "xp_milestone"

# Diminishing returns: each prior activity today costs 5 points, floored at 20%
DIMINISHING_STEP_PERCENT = 5
DIMINISHING_FLOOR_PERCENT = 20
RECENT_ACTIVITY_LIMIT = 20

DECAY_REASON = "XP Decay"
MILESTONE_BONUS_REASON = "Milestone Bonus"


def resolve_source(source: Union[XpSource, str]) -> XpSource:
    """
    Coerce a source string into ``XpSource``.

    Raises:
        ValueError: If the source is not part of the taxonomy
    """
    if isinstance(source, XpSource):
        return source
    try:
        return XpSource(str(source).strip().lower())
    except ValueError:
        raise ValueError(f"Unknown XP source: {source!r}") from None


def activity_for_source(source: Union[XpSource, str]) -> ActivityType:
    return SOURCE_ACTIVITY[resolve_source(source)]


def get_daily_cap(activity_type: ActivityType) -> int:
    return DAILY_XP_CAPS[activity_type]


def get_xp_value(action: str) -> Tuple[int, XpSource, str]:
    """
    Get (amount, source, reason) for an action.

    Raises:
        ValueError: If the action is not configured
    """
    if action not in XP_VALUES:
        raise ValueError(f"XP value not configured for action: {action}")
    return XP_VALUES[action]
