"""
tally.constants — Shared Constants
===================================

Single source of truth for the vocabularies accepted at the API boundary
and re-checked by the services.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Social sharing
# ---------------------------------------------------------------------------
SHARE_PLATFORMS: tuple[str, ...] = (
    "facebook",
    "twitter",
    "whatsapp",
    "linkedin",
    "instagram",
)

SHARE_CONTENT_TYPES: tuple[str, ...] = ("news", "event", "campaign", "election")

VERIFICATION_METHODS: tuple[str, ...] = ("screenshot", "api", "manual")

SHARE_REFERENCE_TYPE = "social_share"

# ---------------------------------------------------------------------------
# Transfers
# ---------------------------------------------------------------------------
TRANSFER_REFERENCE_TYPE = "transfer"
TRANSFER_SOURCE_OUT = "transfer_out"
TRANSFER_SOURCE_IN = "transfer_in"

# ---------------------------------------------------------------------------
# Redemption (airtime / data)
# ---------------------------------------------------------------------------
PRODUCT_TYPES: tuple[str, ...] = ("airtime", "data")

CARRIERS: tuple[str, ...] = ("MTN", "Airtel", "Glo", "9Mobile")

REDEMPTION_REFERENCE_TYPE = "point_redemption"

CURRENCY = "NGN"

# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
