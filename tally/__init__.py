"""
Tally — Points Ledger & Reward Verification for Membership Communities
=======================================================================
Tracks every member's point balance as an append-only ledger, grants points
for verified actions (social shares, tasks, events), moves points between
members, and lets them be spent on real-world value (airtime/data).

Package layout::

    tally/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Platforms, content types, carriers
    ├── errors.py          # Typed failure taxonomy
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine, session helper, async bridge
    │   ├── models.py      # Ledger, shares, verifications, redemptions
    │   └── seed.py        # Default conversion settings
    ├── engine/
    │   ├── metadata.py    # Typed ledger metadata variants
    │   ├── sharing.py     # Share fingerprint + verification state machine
    │   └── quote.py       # Points ↔ currency quotes
    ├── services/
    │   ├── ledger_service.py      # credit / debit / transfer / balance
    │   ├── share_service.py       # recordShare / verifyShare
    │   ├── redemption_service.py  # quote / redeem / compensate
    │   └── fulfillment.py         # Bill-payment gateway client
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # JWT + engine dependencies
        └── routes/        # Member + admin REST endpoints
"""

__version__ = "0.1.0"
