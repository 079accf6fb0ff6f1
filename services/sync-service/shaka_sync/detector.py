"""
Decides whether a user-profile update needs to be fanned out.

Only the display name is propagated. Comparison is on the raw stored values:
an absent old value never equals a defined new one, so the first time a name
is set it still triggers.
"""
import logging
from typing import Any, Mapping, Optional

from shaka_sync.models import MISSING, PropagationTrigger, get_field

logger = logging.getLogger(__name__)

FALLBACK_PREFIX = "User_"


def fallback_display_name(user_id: str) -> str:
    return f"{FALLBACK_PREFIX}{user_id[:6]}"


def canonical_display_name(
    user_id: str,
    data: Optional[Mapping[str, Any]],
    field: str = "displayName",
) -> str:
    """The name every post owned by `user_id` should carry."""
    name = get_field(data, field)
    if isinstance(name, str) and name:
        return name
    return fallback_display_name(user_id)


class ChangeDetector:
    def __init__(self, field: str = "displayName") -> None:
        self.field = field

    def detect(
        self,
        user_id: str,
        before: Optional[Mapping[str, Any]],
        after: Optional[Mapping[str, Any]],
    ) -> Optional[PropagationTrigger]:
        if after is None:
            # Deleted profile, nothing to propagate.
            return None

        old = get_field(before, self.field, MISSING)
        new = get_field(after, self.field, MISSING)
        if old is not MISSING and new is not MISSING and old == new:
            logger.info("No displayName change for user %s", user_id)
            return None
        if old is MISSING and new is MISSING:
            return None

        return PropagationTrigger(
            user_id=user_id,
            new_display_name=canonical_display_name(user_id, after, self.field),
        )
