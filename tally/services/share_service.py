"""
tally.services.share_service — Share Recording, Dedup & Verification
=====================================================================

``record_share`` fingerprints a claimed share and refuses a second reward
for the same (member, platform, content).  Depending on the deployment's
:class:`~tally.engine.sharing.SharePolicy` it either credits immediately
(``auto``) or leaves the share ``pending`` for ``verify_share`` (``manual``).
See :mod:`tally.engine.sharing` for the state machine.

Each operation is one transaction: the share row, its verification row
and the ledger credit commit together or not at all.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import UTC, datetime

from sqlalchemy import Engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tally.constants import (
    SHARE_CONTENT_TYPES,
    SHARE_PLATFORMS,
    SHARE_REFERENCE_TYPE,
    VERIFICATION_METHODS,
)
from tally.database.engine import get_session
from tally.database.models import (
    ShareStatus,
    ShareVerification,
    SocialShare,
    TransactionType,
    VerificationStatus,
)
from tally.engine.metadata import ShareRewardMetadata
from tally.engine.sharing import (
    SharePolicy,
    can_admin_decide,
    next_status,
    share_fingerprint,
)
from tally.errors import (
    AlreadyVerifiedError,
    DuplicateShareError,
    InvalidRequestError,
    NotFoundError,
)
from tally.services import ledger_service

logger = logging.getLogger(__name__)

DEFAULT_REJECTION_REASON = "Verification failed"


def _find_share(
    session: Session, member_id: int, platform: str, share_hash: str
) -> SocialShare | None:
    return session.scalar(
        select(SocialShare).where(
            SocialShare.member_id == member_id,
            SocialShare.platform == platform,
            SocialShare.share_hash == share_hash,
        )
    )


def _duplicate(content_type: str, platform: str) -> DuplicateShareError:
    return DuplicateShareError(
        f"You have already shared this {content_type} on {platform}. "
        "Cannot earn duplicate points."
    )


def _credit_share(
    session: Session,
    share: SocialShare,
    points: int,
    *,
    verification_path: str,
    verified_by: int | None = None,
    verification_method: str | None = None,
) -> None:
    ledger_service.credit(
        session,
        member_id=share.member_id,
        points=points,
        transaction_type=TransactionType.SOCIAL_SHARE,
        source=f"share_{share.platform}",
        reference_type=SHARE_REFERENCE_TYPE,
        reference_id=str(share.id),
        metadata=ShareRewardMetadata(
            share_id=share.id,
            platform=share.platform,
            content_type=share.content_type,
            content_id=share.content_id,
            share_url=share.share_url,
            verification_path=verification_path,
            verified_by=verified_by,
            verification_method=verification_method,
        ),
    )
    share.points_awarded = points
    share.verified_at = datetime.now(UTC)


# ---------------------------------------------------------------------------
# recordShare
# ---------------------------------------------------------------------------
def record_share(
    engine: Engine,
    policy: SharePolicy,
    *,
    member_id: int,
    platform: str,
    content_type: str,
    content_id: str,
    share_url: str | None = None,
) -> SocialShare:
    """Record a claimed share for *member_id*.

    Raises
    ------
    NotFoundError
        If the member does not exist.
    DuplicateShareError
        If this member already shared this content on this platform.
    InvalidRequestError
        For an unknown platform or content type.
    """
    if platform not in SHARE_PLATFORMS:
        raise InvalidRequestError(f"Unsupported platform: {platform!r}")
    if content_type not in SHARE_CONTENT_TYPES:
        raise InvalidRequestError(f"Unsupported content type: {content_type!r}")

    share_hash = share_fingerprint(member_id, platform, content_type, content_id)
    status = policy.initial_status()

    with get_session(engine) as session:
        ledger_service.lock_member(session, member_id)

        if _find_share(session, member_id, platform, share_hash) is not None:
            raise _duplicate(content_type, platform)

        share = SocialShare(
            member_id=member_id,
            platform=platform,
            content_type=content_type,
            content_id=content_id,
            share_url=share_url,
            share_hash=share_hash,
            status=ShareStatus.PENDING.value,
            points_awarded=0,
        )
        # SAVEPOINT so a concurrent insert that beat the pre-check surfaces
        # as a duplicate rather than an opaque integrity failure.
        try:
            with session.begin_nested():
                session.add(share)
                session.flush()
        except IntegrityError:
            raise _duplicate(content_type, platform) from None

        if status is ShareStatus.AUTO_VERIFIED:
            _credit_share(session, share, policy.reward_points, verification_path="auto")
            share.status = status.value
        session.flush()

    if share.verified:
        logger.info(
            "Share %s recorded and auto-verified: member %s +%d points (%s/%s/%s)",
            share.id, member_id, share.points_awarded, platform, content_type, content_id,
        )
    else:
        logger.info(
            "Share %s recorded pending review: member %s (%s/%s/%s)",
            share.id, member_id, platform, content_type, content_id,
        )
    return share


# ---------------------------------------------------------------------------
# verifyShare
# ---------------------------------------------------------------------------
def verify_share(
    engine: Engine,
    policy: SharePolicy,
    *,
    share_id: int,
    verification_method: str,
    verified_by: int,
    approved: bool,
    proof_url: str | None = None,
    rejection_reason: str | None = None,
) -> tuple[SocialShare, ShareVerification]:
    """Record an admin decision on a share and credit it if approved.

    Raises
    ------
    NotFoundError
        If the share does not exist.
    AlreadyVerifiedError
        If the share is already verified (by either path).  No second
        credit is ever issued.
    """
    if verification_method not in VERIFICATION_METHODS:
        raise InvalidRequestError(f"Unsupported verification method: {verification_method!r}")

    with get_session(engine) as session:
        share = session.scalar(
            select(SocialShare).where(SocialShare.id == share_id).with_for_update()
        )
        if share is None:
            raise NotFoundError(f"Share {share_id} not found")
        if not can_admin_decide(share.status):
            raise AlreadyVerifiedError(f"Share {share_id} already verified ({share.status})")

        reason = None if approved else (rejection_reason or DEFAULT_REJECTION_REASON)
        verification = ShareVerification(
            share_id=share.id,
            verification_method=verification_method,
            proof_url=proof_url,
            verified_by=verified_by,
            status=(VerificationStatus.APPROVED if approved else VerificationStatus.REJECTED).value,
            rejection_reason=reason,
        )
        session.add(verification)

        if approved:
            _credit_share(
                session,
                share,
                policy.reward_points,
                verification_path="admin",
                verified_by=verified_by,
                verification_method=verification_method,
            )
        else:
            share.points_awarded = 0
        share.status = next_status(share.status, approved=approved).value
        session.flush()

    if approved:
        logger.info(
            "Share %s approved by admin %s: member %s +%d points",
            share.id, verified_by, share.member_id, share.points_awarded,
        )
    else:
        logger.warning(
            "Share %s rejected by admin %s: %s", share.id, verified_by, reason,
        )
    return share, verification


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_member_shares(engine: Engine, member_id: int) -> list[SocialShare]:
    """All shares recorded by a member, newest first."""
    with get_session(engine) as session:
        return list(session.scalars(
            select(SocialShare)
            .where(SocialShare.member_id == member_id)
            .order_by(SocialShare.id.desc())
        ).all())


def get_share_stats(engine: Engine, member_id: int) -> dict:
    """Totals and per-platform breakdown of a member's shares."""
    shares = get_member_shares(engine, member_id)
    return {
        "total_shares": len(shares),
        "verified_shares": sum(1 for s in shares if s.verified),
        "pending_shares": sum(
            1 for s in shares if s.status == ShareStatus.PENDING.value
        ),
        "total_points_earned": sum(s.points_awarded for s in shares),
        "platform_breakdown": dict(Counter(s.platform for s in shares)),
    }


def get_verifications(engine: Engine, share_id: int) -> list[ShareVerification]:
    """Every admin decision rendered on a share, oldest first."""
    with get_session(engine) as session:
        if session.get(SocialShare, share_id) is None:
            raise NotFoundError(f"Share {share_id} not found")
        return list(session.scalars(
            select(ShareVerification)
            .where(ShareVerification.share_id == share_id)
            .order_by(ShareVerification.id)
        ).all())
