"""
Session token and request throttling tests.
"""

from datetime import datetime

import pytest

from coopfood.errors import ValidationError
from coopfood.models import RateLimitHit, SessionToken
from coopfood.services import rate_limit_service, session_service
from coopfood.time_utils import seconds_ago, to_utc_z, whole_seconds_until


class TestSessions:
    def test_token_stored_hashed(self, db_session):
        row, token = session_service.create_session("admin", "admin1")

        assert row.token_hash == session_service.hash_token(token)
        assert db_session.query(SessionToken).filter_by(token_hash=token).count() == 0

    def test_member_session_carries_member_id(self, db_session, member):
        _, token = session_service.create_session("member", "Amina", member_id="a12345")

        context = session_service.validate_session(token)
        assert context.role == "member"
        assert context.member_id == "A12345"
        assert context.branch_id is None

    @pytest.mark.parametrize("role,kwargs", [
        ("rep", {}),
        ("member", {}),
        ("auditor", {}),
    ])
    def test_incomplete_sessions_rejected(self, db_session, role, kwargs):
        with pytest.raises(ValidationError):
            session_service.create_session(role, "someone", **kwargs)

    def test_expired_session_is_invalid(self, db_session):
        _, token = session_service.create_session("admin", "admin1", ttl_hours=0)
        assert session_service.validate_session(token) is None

    def test_revoke(self, db_session):
        _, token = session_service.create_session("admin", "admin1")
        assert session_service.revoke_session(token) is True
        assert session_service.validate_session(token) is None
        assert session_service.revoke_session(token) is False


class TestRateLimit:
    def test_blocks_after_limit(self, db_session):
        results = [rate_limit_service.hit("reports.demand", "session:1", limit=3, window_seconds=60) for _ in range(4)]

        assert [allowed for allowed, _ in results] == [True, True, True, False]
        retry_after = results[-1][1]
        assert 1 <= retry_after <= 60

    def test_keys_are_independent(self, db_session):
        rate_limit_service.hit("reports.demand", "session:1", limit=1, window_seconds=60)
        allowed, _ = rate_limit_service.hit("reports.demand", "session:2", limit=1, window_seconds=60)
        assert allowed is True

    def test_old_hits_fall_out_of_window(self, db_session):
        db_session.add(RateLimitHit(bucket="b", client_key="k", occurred_at=seconds_ago(120)))
        db_session.commit()

        allowed, _ = rate_limit_service.hit("b", "k", limit=1, window_seconds=60)
        assert allowed is True

    def test_purge_expired(self, db_session):
        db_session.add(RateLimitHit(bucket="b", client_key="k", occurred_at=seconds_ago(7200)))
        db_session.add(RateLimitHit(bucket="b", client_key="k", occurred_at=seconds_ago(10)))
        db_session.commit()

        assert rate_limit_service.purge_expired(3600) == 1
        assert db_session.query(RateLimitHit).count() == 1


def test_time_helpers():
    now = datetime(2026, 10, 19, 12, 0, 0)
    assert seconds_ago(90, now) == datetime(2026, 10, 19, 11, 58, 30)
    assert whole_seconds_until(datetime(2026, 10, 19, 12, 0, 2, 500000), now) == 3
    assert whole_seconds_until(datetime(2026, 10, 19, 11, 0, 0), now) == 1
    assert to_utc_z(datetime(2026, 10, 19, 12, 0, 0, 999)) == "2026-10-19T12:00:00Z"
    assert to_utc_z(None) is None
