"""Identity helpers: normalization, bare numbers, and address construction.

Identities look like ``919876543210@s.whatsapp.net`` (users) or
``120363012345@g.us`` (groups).  Multi-device sessions append a device
part (``919876543210:12@s.whatsapp.net``) which never matters for
comparisons, so everything here strips it.
"""

import re

DEFAULT_USER_SUFFIX = "@s.whatsapp.net"
DEFAULT_GROUP_SUFFIX = "@g.us"


def bare_id(identity: str) -> str:
    """Return the user part of an identity without device or server.

    ``"919876543210:12@s.whatsapp.net"`` -> ``"919876543210"``
    """
    if not identity:
        return ""
    user = identity.split("@", 1)[0]
    return user.split(":", 1)[0]


def normalize_identity(identity: str) -> str:
    """Strip the device part, keeping the server: ``"a:3@s.x"`` -> ``"a@s.x"``."""
    if not identity or "@" not in identity:
        return bare_id(identity)
    user, server = identity.split("@", 1)
    return f"{user.split(':', 1)[0]}@{server}"


def normalize_number(value: str) -> str:
    """Reduce a configured number or identity to its comparable key.

    Accepts phone numbers with punctuation (``"+91 98765-43210"``) as well as
    full identities.  Non-numeric user parts are kept as-is (lowercased).
    """
    user = bare_id(str(value).strip())
    digits = re.sub(r"[^0-9]", "", user)
    return digits or user.lower()


def to_user_id(number: str, suffix: str = DEFAULT_USER_SUFFIX) -> str:
    """Build a user identity from a phone number or existing identity."""
    if "@" in number:
        return normalize_identity(number)
    return f"{normalize_number(number)}{suffix}"


def is_group(identity: str | None, suffix: str = DEFAULT_GROUP_SUFFIX) -> bool:
    """True if *identity* addresses a group."""
    return bool(identity) and identity.endswith(suffix)


def mention_token(identity: str) -> str:
    """Render the ``@number`` token used to mention *identity* in text."""
    return f"@{bare_id(identity)}"
