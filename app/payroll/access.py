from __future__ import annotations

import logging
from typing import Optional

from errors import PermissionDenied
from roles import Action, can_act

from .records import ProfileRecord

logger = logging.getLogger(__name__)


async def authorize(
    store,
    actor_id: Optional[str],
    action: Action,
    *,
    target_staff_id: Optional[str] = None,
) -> ProfileRecord:
    """Resolve the acting profile and check it may perform ``action``.

    Denials carry a generic message whatever the reason.
    """
    actor = await store.get_profile(actor_id) if actor_id else None
    if actor is None:
        logger.info("Denied %s: unknown actor", action.value)
        raise PermissionDenied()
    target_role = None
    if target_staff_id and target_staff_id != actor.id:
        target = await store.get_profile(target_staff_id)
        target_role = target.role if target else None
    elif target_staff_id:
        target_role = actor.role
    if not can_act(actor.role, actor.is_active, target_role, action):
        logger.info("Denied %s for actor %s", action.value, actor.id)
        raise PermissionDenied()
    return actor
