"""Heuristics flagging rule match conditions that cover too many senders.

What:
  Decide whether a ``from_domain`` condition is broad enough to route mail from
  unrelated senders, and build the warning records shown to operators.

Why:
  A domain rule on a public mail provider, or on a bare corporate domain,
  looks targeted but silently captures every sender behind it. Rule authoring
  forces an explicit confirmation for such domains and the inspector flags
  rules that were saved before the check existed.

How:
  Exact matches against known public providers, plus two shape checks for
  registrable domains (``name.com|net|org`` and ``name.co.jp|ne.jp``). This is
  deliberately not a Public Suffix List lookup; deeper subdomains are treated
  as specific.

Interfaces:
  :func:`is_broad_domain`, :func:`broad_match_domain`,
  :func:`broad_domain_warning`.
"""
from __future__ import annotations

import re
from typing import Any, Dict, Optional

from .normalize import normalize_domain


PUBLIC_PROVIDERS = frozenset(
    {
        "gmail.com",
        "googlemail.com",
        "yahoo.com",
        "yahoo.co.jp",
        "outlook.com",
        "hotmail.com",
        "live.com",
        "icloud.com",
    }
)

_BARE_GENERIC = re.compile(r"^[^.]+\.(com|net|org)$")
_BARE_JP = re.compile(r"^[^.]+\.(co|ne)\.jp$")


def is_broad_domain(domain: str) -> bool:
    """Return ``True`` when ``domain`` would match a dangerously wide population."""

    normalized = normalize_domain(domain)
    if normalized is None:
        return False
    if normalized in PUBLIC_PROVIDERS:
        return True
    if _BARE_GENERIC.match(normalized):
        return True
    if _BARE_JP.match(normalized):
        return True
    return False


def broad_match_domain(match: Any) -> Optional[str]:
    """Return the rule's ``from_domain`` when it is broad, else ``None``.

    The domain is checked even when ``from_email`` is also set, since the
    matcher falls back to the domain for every other sender.
    """

    domain = getattr(match, "from_domain", None)
    if domain and is_broad_domain(domain):
        return domain
    return None


def broad_domain_warning(domain: str) -> Dict[str, str]:
    """Build the warning record attached to previews, inspections and suggestions."""

    normalized = normalize_domain(domain) or domain
    return {
        "type": "broad_domain",
        "message": f"from_domain {normalized} is broad and may match unrelated senders",
    }
