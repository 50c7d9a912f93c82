"""
tally.engine.sharing — Share Fingerprint & Verification State Machine
======================================================================

Pure logic behind share recording.  No DB I/O.

Verification policy
-------------------
A share becomes verified through exactly one path, fixed when the share
is recorded:

* ``auto`` mode: the share is credited in the same transaction that
  inserts it and lands in ``auto_verified``.  The admin path is closed
  to it for good.
* ``manual`` mode: the share is inserted ``pending`` with no credit.
  Only an admin decision moves it, to ``admin_approved`` (credited) or
  ``admin_rejected`` (not credited, may be decided again).

::

    pending ──approve──▶ admin_approved
       │
       └──reject──▶ admin_rejected ──approve──▶ admin_approved
                          └──reject──▶ admin_rejected

    (insert, auto) ──▶ auto_verified
"""

from __future__ import annotations

import enum
import hashlib
from dataclasses import dataclass

from tally.database.models import ShareStatus


class VerificationMode(enum.StrEnum):
    AUTO = "auto"
    MANUAL = "manual"


@dataclass(frozen=True, slots=True)
class SharePolicy:
    """How shares are rewarded in this deployment."""

    reward_points: int = 10
    mode: VerificationMode = VerificationMode.AUTO

    def initial_status(self) -> ShareStatus:
        if self.mode is VerificationMode.AUTO:
            return ShareStatus.AUTO_VERIFIED
        return ShareStatus.PENDING


# Statuses from which an admin decision may be rendered.
_ADMIN_DECIDABLE = frozenset({ShareStatus.PENDING, ShareStatus.ADMIN_REJECTED})


def share_fingerprint(member_id: int, platform: str, content_type: str, content_id: str) -> str:
    """Deterministic SHA-256 over (member, platform, content type, content id)."""
    raw = f"{member_id}-{platform}-{content_type}-{content_id}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def can_admin_decide(status: str) -> bool:
    """True if an admin may still approve or reject a share in *status*."""
    return status in _ADMIN_DECIDABLE


def next_status(status: str, *, approved: bool) -> ShareStatus:
    """Status after an admin decision on a share currently in *status*.

    Raises ``ValueError`` for a status that is closed to the admin path;
    callers check :func:`can_admin_decide` first and raise the typed
    failure themselves.
    """
    if not can_admin_decide(status):
        raise ValueError(f"share in status {status!r} cannot take an admin decision")
    return ShareStatus.ADMIN_APPROVED if approved else ShareStatus.ADMIN_REJECTED
