"""Membership announcements — welcome, goodbye, promote and demote notices.

Cache invalidation for membership changes lives in the group cache; this
module only handles the optional human-facing notices, each switched on
separately in the ``notifications`` config section.
"""

from __future__ import annotations

from collections.abc import Callable

from loguru import logger

from novagate.core.config_schema import NotificationSettings
from novagate.core.utils.identity import mention_token, normalize_identity
from novagate.gateway.notifier import Notifier
from novagate.session.events import MembershipAction, MembershipChange

_TEMPLATES: dict[MembershipAction, tuple[str, str]] = {
    MembershipAction.ADD: ("welcome", "Welcome {mention} to the group! Enjoy your stay."),
    MembershipAction.REMOVE: ("goodbye", "Goodbye {mention}, take care!"),
    MembershipAction.PROMOTE: ("admin_changes", "{mention} is now an admin."),
    MembershipAction.DEMOTE: ("admin_changes", "{mention} is no longer an admin."),
}


class MembershipAnnouncer:
    """Post a notice to the group for each changed participant.

    Args:
        notifier: Delivery sink.
        settings: Which notices are enabled.
        self_id: Callable returning the bot's own identity (changes to the bot
            itself are never announced).
    """

    def __init__(
        self,
        notifier: Notifier,
        settings: NotificationSettings,
        self_id: Callable[[], str | None] = lambda: None,
    ):
        self._notifier = notifier
        self.settings = settings
        self._self_id = self_id

    def enabled_for(self, action: MembershipAction) -> bool:
        flag, _ = _TEMPLATES[action]
        return bool(getattr(self.settings, flag))

    async def handle(self, event: MembershipChange) -> int:
        """Announce *event*. Returns the number of notices delivered."""
        if not self.enabled_for(event.action):
            return 0
        _, template = _TEMPLATES[event.action]
        me = self._self_id()
        me = normalize_identity(me) if me else None

        sent = 0
        for identity in event.changed:
            if me and normalize_identity(identity) == me:
                logger.debug(f"Not announcing {event.action.value} of the bot itself in {event.group_id}")
                continue
            text = template.format(mention=mention_token(identity))
            if await self._notifier.deliver(event.group_id, text, mentions=[identity]):
                sent += 1
        return sent
