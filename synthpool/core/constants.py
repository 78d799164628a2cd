"""Generic constants for synthetic pool calculations."""

from decimal import Decimal

# Time constants (seconds)
SECONDS_PER_DAY = 24 * 3600
SECONDS_PER_YEAR = 365 * SECONDS_PER_DAY

# Precision constants
WAD = 10**18  # Oracle prices are delivered as 18-decimal fixed point
ABI_WORD_SIZE = 32  # Bytes per ABI-encoded uint256
PRICE_RESPONSE_WORDS = 5  # open, high, low, close, timestamp

# Tolerances for conservation checks
ABSOLUTE_TOLERANCE = Decimal("1e-12")
RELATIVE_TOLERANCE = Decimal("1e-18")

ZERO = Decimal("0")
ONE = Decimal("1")
INFINITE_HEALTH = Decimal("Infinity")

# Custody account holding pool funds in token ledgers
POOL_CUSTODY = "pool"
