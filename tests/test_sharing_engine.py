"""
tests/test_sharing_engine.py — Share Fingerprint & State Machine
=================================================================

Pure logic, no database.
"""

from __future__ import annotations

import hashlib

import pytest

from tally.database.models import ShareStatus
from tally.engine.sharing import (
    SharePolicy,
    VerificationMode,
    can_admin_decide,
    next_status,
    share_fingerprint,
)


class TestShareFingerprint:
    def test_matches_sha256_of_joined_fields(self):
        expected = hashlib.sha256(b"7-facebook-news-abc").hexdigest()
        assert share_fingerprint(7, "facebook", "news", "abc") == expected

    def test_is_deterministic(self):
        assert share_fingerprint(1, "twitter", "event", "e1") == share_fingerprint(
            1, "twitter", "event", "e1"
        )

    @pytest.mark.parametrize(
        "other",
        [
            (2, "twitter", "event", "e1"),
            (1, "facebook", "event", "e1"),
            (1, "twitter", "news", "e1"),
            (1, "twitter", "event", "e2"),
        ],
    )
    def test_any_field_changes_the_hash(self, other):
        assert share_fingerprint(1, "twitter", "event", "e1") != share_fingerprint(*other)


class TestSharePolicy:
    def test_defaults(self):
        policy = SharePolicy()
        assert policy.reward_points == 10
        assert policy.mode is VerificationMode.AUTO

    def test_initial_status_per_mode(self):
        assert SharePolicy(mode=VerificationMode.AUTO).initial_status() is ShareStatus.AUTO_VERIFIED
        assert SharePolicy(mode=VerificationMode.MANUAL).initial_status() is ShareStatus.PENDING


class TestStateMachine:
    def test_admin_may_decide_pending_and_rejected_only(self):
        assert can_admin_decide("pending")
        assert can_admin_decide("admin_rejected")
        assert not can_admin_decide("auto_verified")
        assert not can_admin_decide("admin_approved")

    def test_transitions(self):
        assert next_status("pending", approved=True) is ShareStatus.ADMIN_APPROVED
        assert next_status("pending", approved=False) is ShareStatus.ADMIN_REJECTED
        assert next_status("admin_rejected", approved=True) is ShareStatus.ADMIN_APPROVED

    @pytest.mark.parametrize("closed", ["auto_verified", "admin_approved"])
    def test_closed_statuses_raise(self, closed):
        with pytest.raises(ValueError):
            next_status(closed, approved=True)
