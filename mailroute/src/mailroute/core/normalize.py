"""Canonicalise sender addresses and domains for rule matching.

What:
  Turn free-form ``From`` header values, rule inputs, and organisation
  assignee addresses into lowercase canonical strings, or ``None`` when the
  input cannot identify a mailbox.

Why:
  Rules are authored by hand and headers arrive in many shapes
  (``"Name" <a@b.c>``, RFC 2047 encoded words, stray whitespace). Matching must
  compare like with like, and a malformed value must make a rule inert rather
  than crash a batch.

How:
  Decode encoded words with :mod:`email.header`, prefer an address inside angle
  brackets, fall back to the first address-looking token, then apply the
  sanity checks below. No helper raises on malformed input.

Interfaces:
  :func:`normalize_email_address`, :func:`normalize_domain`,
  :func:`normalize_org_email`, :func:`sender_domain`.

Invariants & Safety:
  - Returned addresses contain exactly the characters of the address, are
    lowercase, contain ``@``, and contain no whitespace.
  - Returned domains contain at least one ``.`` and no leading ``@``/``.``.
"""
from __future__ import annotations

import re
from email.header import decode_header, make_header
from typing import Optional


_ANGLE = re.compile(r"<\s*([^<>\s]+@[^<>\s]+)\s*>")
_TOKEN = re.compile(r"([A-Z0-9._%+'-]+@[A-Z0-9.-]+\.[A-Z]{2,})", re.IGNORECASE)


def _decode_words(raw: str) -> str:
    if "=?" not in raw:
        return raw
    try:
        return str(make_header(decode_header(raw)))
    except (LookupError, UnicodeDecodeError, ValueError):
        return raw


def normalize_email_address(raw: Optional[str]) -> Optional[str]:
    """Extract and canonicalise an email address.

    Args:
      raw: ``"Name <addr>"``, a bare address, or an RFC 2047 encoded header.

    Returns:
      The lowercase address, or ``None`` when no valid address is present.
    """

    if not raw:
        return None
    text = _decode_words(str(raw)).strip()
    if not text:
        return None
    angle = _ANGLE.search(text)
    if angle:
        candidate = angle.group(1)
    elif "<" in text or ">" in text:
        token = _TOKEN.search(text)
        if not token:
            return None
        candidate = token.group(1)
    else:
        candidate = text
    candidate = candidate.strip().lower()
    if "@" not in candidate or candidate.startswith("@") or candidate.endswith("@"):
        return None
    if any(ch.isspace() for ch in candidate):
        return None
    return candidate


def normalize_domain(raw: Optional[str]) -> Optional[str]:
    """Canonicalise a rule domain such as ``@Example.com`` to ``example.com``."""

    if not raw:
        return None
    text = str(raw).strip().lower()
    text = text.lstrip("@").lstrip(".")
    if not text or any(ch.isspace() for ch in text):
        return None
    if "." not in text or "@" in text:
        return None
    return text


def normalize_org_email(raw: Optional[str], org_domain: str) -> Optional[str]:
    """Canonicalise an assignee address that must belong to ``org_domain``."""

    email = normalize_email_address(raw)
    domain = normalize_domain(org_domain)
    if email is None or domain is None:
        return None
    if not email.endswith(f"@{domain}"):
        return None
    return email


def sender_domain(email: Optional[str]) -> Optional[str]:
    """Return the domain part of a normalised address, or ``None``."""

    normalized = normalize_email_address(email)
    if normalized is None:
        return None
    domain = normalized.rsplit("@", 1)[1].strip()
    return domain or None
