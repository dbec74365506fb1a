"""Anti-link moderation — acts on risky links posted in groups.

A group message is flagged when any link in it points at a known URL
shortener or a bare IP address, has an implausibly short host, or cannot
be parsed at all.  Domains in ``antilink.allowed_domains`` (and their
subdomains) are never flagged; with ``antilink.block_unlisted`` every
other link is flagged too.

Group admins are never moderated, and neither are elevated identities
unless ``antilink.exempt_elevated`` is off.  The configured action is one of:

- ``delete``: remove the message for everyone
- ``kick``: remove the sender from the group
- ``warn``: post a warning in the group that mentions the sender

A flagged message is never passed on to the command router.
"""

from __future__ import annotations

import asyncio
import ipaddress
import re
from collections.abc import Awaitable, Callable, Iterable, Sequence
from urllib.parse import urlsplit

from loguru import logger

from novagate.core.config_schema import AntiLinkSettings
from novagate.core.exceptions import SessionError
from novagate.core.utils.identity import bare_id, mention_token, normalize_number
from novagate.gateway.group_cache import GroupMetadataCache
from novagate.gateway.notifier import Notifier
from novagate.session.events import InboundMessage

URL_PATTERN = re.compile(
    r"(?:https?|ftp)://\S+"
    r"|www\.[a-z0-9][a-z0-9-]*(?:\.[a-z0-9-]+)+\S*"
    r"|\b\d{1,3}(?:\.\d{1,3}){3}(?::\d+)?(?:/\S*)?"
    r"|\b[a-z0-9-]+(?:\.[a-z0-9-]+)*\.[a-z]{2,}\b(?:/\S*)?",
    re.IGNORECASE,
)

SHORTENERS = frozenset({"bit.ly", "bitly.com", "tinyurl.com", "goo.gl", "is.gd", "ow.ly"})

MIN_HOST_LENGTH = 5

_TRAILING = ".,;:!?)]}>'\""

DeleteFn = Callable[[InboundMessage], Awaitable[None]]
RemoveFn = Callable[[str, Sequence[str]], Awaitable[None]]


def find_links(text: str) -> list[str]:
    """Every link-looking token in *text*, trailing punctuation removed."""
    if not text:
        return []
    return [m.group(0).rstrip(_TRAILING) for m in URL_PATTERN.finditer(text)]


def link_host(link: str) -> str | None:
    """Lowercased host of *link* without a leading ``www.``; None if unparsable."""
    candidate = link if "://" in link else f"https://{link}"
    try:
        host = urlsplit(candidate).hostname
    except ValueError:
        return None
    if not host:
        return None
    return host.rstrip(".").removeprefix("www.")


def _in_domains(host: str, domains: Iterable[str]) -> bool:
    return any(host == d or host.endswith(f".{d}") for d in domains)


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def is_suspicious_link(link: str, *, allowed_domains: Iterable[str] = (), block_unlisted: bool = False) -> bool:
    """True if *link* should be moderated."""
    host = link_host(link)
    if host is None:
        return True
    if _in_domains(host, allowed_domains):
        return False
    if block_unlisted:
        return True
    return _in_domains(host, SHORTENERS) or _is_ip_literal(host) or len(host) < MIN_HOST_LENGTH


def find_suspicious_links(
    text: str, *, allowed_domains: Iterable[str] = (), block_unlisted: bool = False
) -> list[str]:
    allowed = tuple(allowed_domains)
    return [
        link
        for link in find_links(text)
        if is_suspicious_link(link, allowed_domains=allowed, block_unlisted=block_unlisted)
    ]


class AntiLinkGuard:
    """Check inbound group messages and enforce the configured action.

    Args:
        settings: The ``antilink`` config section.
        cache: Group metadata, used to exempt admins.
        notifier: Sink for ``warn`` notices.
        delete_message: Session capability used by ``delete``.
        remove_participants: Session capability used by ``kick``.
        elevated: Configured elevated numbers/identities.
        timeout: Seconds a delete or kick may take.
    """

    def __init__(
        self,
        settings: AntiLinkSettings,
        cache: GroupMetadataCache,
        notifier: Notifier,
        *,
        delete_message: DeleteFn,
        remove_participants: RemoveFn,
        elevated: Iterable[str] = (),
        timeout: float = 15.0,
    ):
        self.settings = settings
        self._cache = cache
        self._notifier = notifier
        self._delete = delete_message
        self._remove = remove_participants
        self._elevated = frozenset(k for k in (normalize_number(e) for e in elevated) if k)
        self.timeout = timeout
        self.actions_taken = 0

    async def check(self, message: InboundMessage) -> bool:
        """Moderate *message* if it carries a risky link. Returns True if it was flagged."""
        settings = self.settings
        if not settings.enabled or not message.group or message.from_self:
            return False

        links = find_suspicious_links(
            message.text, allowed_domains=settings.allowed_domains, block_unlisted=settings.block_unlisted
        )
        if not links:
            return False

        sender = bare_id(message.sender)
        if settings.exempt_elevated and normalize_number(message.sender) in self._elevated:
            logger.debug(f"Not moderating link from elevated {sender} in {message.group}")
            return False
        if await self._cache.is_admin(message.group, message.sender):
            logger.debug(f"Not moderating link from admin {sender} in {message.group}")
            return False

        logger.info(f"[ANTILINK] {sender} posted {links[0]} in {message.group} (action={settings.action})")
        await self._enforce(message)
        self.actions_taken += 1
        return True

    async def _enforce(self, message: InboundMessage) -> None:
        action = self.settings.action
        group = message.group or ""
        try:
            if action == "delete":
                await asyncio.wait_for(self._delete(message), timeout=self.timeout)
            elif action == "kick":
                await asyncio.wait_for(self._remove(group, [message.sender]), timeout=self.timeout)
            else:
                text = f"{mention_token(message.sender)} {self.settings.warn_text}"
                await self._notifier.deliver(group, text, mentions=[message.sender])
        except SessionError as e:
            logger.warning(f"Anti-link {action} failed in {group}: {e}")
        except TimeoutError:
            logger.warning(f"Anti-link {action} in {group} timed out after {self.timeout:g}s")

    def get_status(self) -> dict:
        return {
            "enabled": self.settings.enabled,
            "action": self.settings.action,
            "allowed_domains": list(self.settings.allowed_domains),
            "actions_taken": self.actions_taken,
        }
