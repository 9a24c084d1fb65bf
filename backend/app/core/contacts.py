"""Contact address validation shared by the write paths and the dispatcher."""

from __future__ import annotations

import re

from .errors import ValidationError

WHATSAPP_SUFFIX = "@c.us"

_SEPARATORS = re.compile(r"[\s\-().]")
_PHONE = re.compile(r"^\+?\d{8,15}$")


def normalize_contact(raw: str | None) -> str:
    """Return the canonical form of a phone-like contact or raise ``ValidationError``.

    Spaces, dashes, dots and parentheses are dropped. A trailing ``@c.us``
    (WhatsApp Web chat id) is accepted and preserved; the remaining part must
    be 8 to 15 digits with an optional leading ``+``.
    """
    if raw is None or not str(raw).strip():
        raise ValidationError("contact must not be empty")

    value = str(raw).strip()
    suffix = ""
    if value.endswith(WHATSAPP_SUFFIX):
        value = value[: -len(WHATSAPP_SUFFIX)]
        suffix = WHATSAPP_SUFFIX

    value = _SEPARATORS.sub("", value)
    if not _PHONE.match(value):
        raise ValidationError("contact is not a valid phone number", contact=raw)
    return value + suffix


def gateway_recipient(contact: str) -> str:
    """Strip formatting the HTTP gateways do not accept (``+`` and ``@c.us``)."""

    value = contact[: -len(WHATSAPP_SUFFIX)] if contact.endswith(WHATSAPP_SUFFIX) else contact
    return value.lstrip("+")
