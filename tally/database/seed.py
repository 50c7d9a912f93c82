"""
tally.database.seed — Default Conversion Settings Seeder
=========================================================

Baseline points → currency rates for the redemption products so quotes
work immediately after first startup.

Idempotent — only inserts products that don't already exist.  Rates
edited later by an admin are never overwritten.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import Engine, select

from tally.database.engine import get_session
from tally.database.models import ConversionSetting

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default catalogue: product → (points per currency unit, min points, max points)
# ---------------------------------------------------------------------------
DEFAULT_CONVERSION_SETTINGS: dict[str, tuple[Decimal, int, int]] = {
    "airtime": (Decimal("1.00"), 100, 10000),
    "data": (Decimal("1.00"), 100, 10000),
}


def seed_conversion_settings(engine: Engine) -> int:
    """Insert any missing default conversion settings.

    Returns the number of rows inserted.
    """
    inserted = 0
    with get_session(engine) as session:
        existing = set(session.scalars(select(ConversionSetting.product_type)).all())
        for product_type, (rate, min_points, max_points) in DEFAULT_CONVERSION_SETTINGS.items():
            if product_type in existing:
                continue
            session.add(ConversionSetting(
                product_type=product_type,
                base_rate=rate,
                min_points=min_points,
                max_points=max_points,
                carrier_overrides={},
                is_active=True,
            ))
            inserted += 1

    if inserted:
        logger.info("Seeded %d default conversion settings", inserted)
    return inserted
