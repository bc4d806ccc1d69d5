"""
Movement kinds and their sign conventions.

Every ledger entry stores a positive quantity; the kind decides whether it
credits (+1) or debits (-1) its bucket.  Each base kind has a REVERSAL_*
counterpart with the opposite sign.  Reversal kinds are terminal: they are
not reversible themselves.
"""

from enum import Enum


class MovementKind(str, Enum):
    INTAKE = "INTAKE"
    ISSUE = "ISSUE"
    RETURN = "RETURN"
    TRANSFER_OUT = "TRANSFER_OUT"
    TRANSFER_IN = "TRANSFER_IN"
    ADJUSTMENT_IN = "ADJUSTMENT_IN"
    ADJUSTMENT_OUT = "ADJUSTMENT_OUT"
    DISPOSAL = "DISPOSAL"

    REVERSAL_INTAKE = "REVERSAL_INTAKE"
    REVERSAL_ISSUE = "REVERSAL_ISSUE"
    REVERSAL_RETURN = "REVERSAL_RETURN"
    REVERSAL_TRANSFER_OUT = "REVERSAL_TRANSFER_OUT"
    REVERSAL_TRANSFER_IN = "REVERSAL_TRANSFER_IN"
    REVERSAL_ADJUSTMENT_IN = "REVERSAL_ADJUSTMENT_IN"
    REVERSAL_ADJUSTMENT_OUT = "REVERSAL_ADJUSTMENT_OUT"
    REVERSAL_DISPOSAL = "REVERSAL_DISPOSAL"

    @property
    def sign(self) -> int:
        """+1 for kinds that credit a bucket, -1 for kinds that debit it."""
        if self.is_reversal:
            return -_BASE_SIGNS[self.reversed_kind]
        return _BASE_SIGNS[self]

    @property
    def is_credit(self) -> bool:
        return self.sign > 0

    @property
    def is_debit(self) -> bool:
        return self.sign < 0

    @property
    def is_reversal(self) -> bool:
        return self.value.startswith(_REVERSAL_PREFIX)

    @property
    def is_adjustment(self) -> bool:
        return self in (MovementKind.ADJUSTMENT_IN, MovementKind.ADJUSTMENT_OUT)

    @property
    def reversal_kind(self) -> "MovementKind":
        """The kind that counters this one.

        Raises:
            ValueError: If this kind is already a reversal.
        """
        if self.is_reversal:
            raise ValueError(f"{self.value} is a reversal kind and has no reversal")
        return MovementKind(_REVERSAL_PREFIX + self.value)

    @property
    def reversed_kind(self) -> "MovementKind":
        """For a reversal kind, the base kind it counters."""
        if not self.is_reversal:
            raise ValueError(f"{self.value} is not a reversal kind")
        return MovementKind(self.value[len(_REVERSAL_PREFIX):])

    @classmethod
    def adjustment_for(cls, delta: int) -> "MovementKind":
        """ADJUSTMENT_IN for a positive delta, ADJUSTMENT_OUT for a negative one."""
        if delta == 0:
            raise ValueError("An adjustment needs a non-zero delta")
        return cls.ADJUSTMENT_IN if delta > 0 else cls.ADJUSTMENT_OUT


_REVERSAL_PREFIX = "REVERSAL_"

_BASE_SIGNS: dict[MovementKind, int] = {
    MovementKind.INTAKE: 1,
    MovementKind.ISSUE: -1,
    MovementKind.RETURN: 1,
    MovementKind.TRANSFER_OUT: -1,
    MovementKind.TRANSFER_IN: 1,
    MovementKind.ADJUSTMENT_IN: 1,
    MovementKind.ADJUSTMENT_OUT: -1,
    MovementKind.DISPOSAL: -1,
}
