"""Public slug derivation.

The slug addresses a tenant's public funnel page (/p/<slug>). It is derived
from the business name, so two businesses whose names normalize the same way
share a slug. Nothing here (or in the stores) prevents that collision.
"""

import re

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def derive_slug(name):
    """Convert a business name to a URL-safe slug.

    Lowercase, every run of non-alphanumerics becomes a single hyphen,
    leading/trailing hyphens stripped. Idempotent.
    """
    value = (name or "").lower()
    value = _NON_ALNUM_RE.sub("-", value)
    return value.strip("-")


_SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


def is_valid_slug(slug):
    """True for strings derive_slug() could have produced (non-empty)."""
    return bool(slug) and _SLUG_RE.match(slug) is not None
