"""
Battle Arena: timed multi-participant trading battles.

Participants register a strategy on a ledger, rule-based agents trade a shared
price feed on their behalf, and the top-ranked participant at the deadline is
reported back to the ledger as the winner.
"""

__version__ = "1.0.0"
