"""Notification sink — delivers status and error text to people.

Router, supervisor signals, and membership announcements all talk to
remote parties through this one class, which wraps the session's ``send``
capability.  Delivery failures are logged and reported as ``False``; they
never propagate into the component that asked for the notification.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence

from loguru import logger

from novagate.core.exceptions import SendError
from novagate.core.types import SendFn
from novagate.core.utils.identity import DEFAULT_USER_SUFFIX, to_user_id


class Notifier:
    """Send human-readable notices to a chat or to the elevated identities.

    Args:
        send: Async ``(target, payload)`` capability from the session handle.
        elevated: Configured elevated numbers/identities (status recipients).
        user_suffix: Suffix used to turn bare numbers into identities.
        timeout: Seconds a single delivery may take.
    """

    def __init__(
        self,
        send: SendFn,
        *,
        elevated: Iterable[str] = (),
        user_suffix: str = DEFAULT_USER_SUFFIX,
        timeout: float = 15.0,
    ):
        self._send = send
        self.timeout = timeout
        self.elevated_targets: list[str] = sorted({to_user_id(e, user_suffix) for e in elevated if str(e).strip()})

    async def deliver(self, target: str, text: str, *, mentions: Sequence[str] = ()) -> bool:
        """Send *text* to *target*. Returns True when the transport acknowledged it."""
        payload: dict = {"text": text}
        if mentions:
            payload["mentions"] = list(mentions)
        try:
            await asyncio.wait_for(self._send(target, payload), timeout=self.timeout)
            return True
        except SendError as e:
            logger.warning(f"Could not deliver notice to {target}: {e}")
        except TimeoutError:
            logger.warning(f"Delivery to {target} timed out after {self.timeout:g}s")
        except Exception:
            logger.exception(f"Unexpected error delivering notice to {target}")
        return False

    async def notify_elevated(self, text: str) -> int:
        """Send *text* to every elevated identity. Returns how many deliveries succeeded."""
        if not self.elevated_targets:
            logger.debug("No elevated identities configured; status notice not sent")
            return 0
        results = await asyncio.gather(*(self.deliver(t, text) for t in self.elevated_targets))
        return sum(1 for ok in results if ok)
