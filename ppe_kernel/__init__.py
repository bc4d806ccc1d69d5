"""
PPE Kernel - stock ledger and unit-tracked delivery lifecycle

Keeps protective-equipment balances, delivery records and return records
mutually consistent:
- Append-only movement ledger with before/after balances
- Atomic balance updates with canonical lock ordering
- Movement notes concluded all-or-nothing
- Deliveries expanded to individually tracked units
- Returns routed by physical condition, reversible within a grace window
"""

__version__ = "0.1.0"
