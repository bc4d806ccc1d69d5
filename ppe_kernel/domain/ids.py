"""
Pluggable generation of human-facing codes for deliveries and units.

Primary keys are always uuid4 (see db/base.py).  Codes printed on delivery
receipts and unit tags come from an ``IdGenerator`` injected into the
delivery service.  ``UUIDIdGenerator`` is the default; ``ShortCodeGenerator``
produces short codes for printed tags and relies on the UNIQUE constraints
on ``deliveries.code`` / ``delivery_units.code`` to catch collisions.
"""

import re
import secrets
from abc import ABC, abstractmethod
from uuid import uuid4

# No 0/1/O/I/L: avoids misreading printed tags
SHORT_CODE_ALPHABET = "23456789ABCDEFGHJKMNPQRSTUVWXYZ"
SHORT_CODE_LENGTH = 5

DELIVERY_PREFIX = "E"
UNIT_PREFIX = "I"

_SHORT_CODE_RE = re.compile(
    rf"^[A-Z][{SHORT_CODE_ALPHABET}]{{{SHORT_CODE_LENGTH}}}$"
)


class IdGenerator(ABC):
    """Produces a new unique code for an entity family identified by prefix."""

    @abstractmethod
    def new_code(self, prefix: str) -> str:
        ...


class UUIDIdGenerator(IdGenerator):
    """Collision-resistant codes: ``<prefix>-<32 hex chars>``."""

    def new_code(self, prefix: str) -> str:
        return f"{prefix}-{uuid4().hex.upper()}"


class ShortCodeGenerator(IdGenerator):
    """
    Short codes: one prefix letter + 5 characters, e.g. ``E7K2QX``.

    ~28M combinations per prefix; callers must handle a unique-constraint
    violation on collision.
    """

    def new_code(self, prefix: str) -> str:
        if len(prefix) != 1 or not prefix.isalpha() or not prefix.isupper():
            raise ValueError(f"Short code prefix must be one uppercase letter: {prefix!r}")
        body = "".join(
            secrets.choice(SHORT_CODE_ALPHABET) for _ in range(SHORT_CODE_LENGTH)
        )
        return prefix + body


def is_valid_short_code(code: str, prefix: str | None = None) -> bool:
    """True when ``code`` has the short-code shape (and prefix, if given)."""
    if not _SHORT_CODE_RE.match(code):
        return False
    return prefix is None or code.startswith(prefix)
