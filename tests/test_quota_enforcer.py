"""Quota decisions over the in-memory store."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given, settings as hypothesis_settings, strategies as st

from canquota.core.errors import QuotaExceeded, UpstreamUnavailable
from canquota.core.timeutil import utc_today
from canquota.domain.identity import Identity, LimitType
from canquota.repositories import InMemoryAttemptLogRepository, InMemoryUsageRepository
from canquota.services.identity import anonymous_id_for
from canquota.services.quota import LIMIT_EXCEEDED_MESSAGE, QuotaEnforcer

from .conftest import FakeClock, make_settings

IP = "203.0.113.7"


def anonymous(fingerprint: str = "deviceA", ip: str = IP) -> Identity:
    return Identity.anonymous(
        anonymous_id_for(ip, fingerprint), ip_address=ip, fingerprint=fingerprint
    )


def authenticated(user_id: str = "user-123", ip: str = IP) -> Identity:
    return Identity.authenticated(user_id, ip_address=ip, fingerprint="deviceA")


async def test_fresh_anonymous_caller_has_full_allowance(enforcer):
    status = await enforcer.check(anonymous())

    assert status.used == 0
    assert status.remaining == 5
    assert status.can_generate is True
    assert status.limit_type == LimitType.ANONYMOUS
    assert status.reset_time == datetime(2026, 3, 15, tzinfo=timezone.utc)


async def test_anonymous_caller_capped_at_five(enforcer, attempt_repo):
    identity = anonymous()
    for expected in range(1, 6):
        result = await enforcer.record(identity, success=True)
        assert result.success is True
        assert result.used == expected
        assert result.remaining == 5 - expected

    with pytest.raises(QuotaExceeded) as excinfo:
        await enforcer.record(identity, success=True)

    assert excinfo.value.used == 5
    assert excinfo.value.to_dict() == {
        "error": "Generation limit exceeded",
        "canGenerate": False,
        "generationsUsed": 5,
        "generationsRemaining": 0,
    }
    status = await enforcer.check(identity)
    assert status.used == 5
    assert status.can_generate is False

    rejected = attempt_repo.entries[-1]
    assert rejected.success is False
    assert rejected.error_message == LIMIT_EXCEEDED_MESSAGE
    assert rejected.generations_before == rejected.generations_after == 5


async def test_check_never_mutates(enforcer, usage_repo, attempt_repo):
    identity = anonymous()
    await enforcer.record(identity, success=True)

    for _ in range(10):
        status = await enforcer.check(identity)
        assert status.used == 1

    assert len(attempt_repo.entries) == 1


async def test_failed_generation_is_logged_without_counting(enforcer, attempt_repo):
    identity = anonymous()
    await enforcer.record(identity, success=True)

    result = await enforcer.record(identity, success=False, error_message="render crashed")

    assert result.success is False
    assert result.used == 1
    assert result.remaining == 4
    entry = attempt_repo.entries[-1]
    assert entry.success is False
    assert entry.error_message == "render crashed"
    assert entry.generations_before == entry.generations_after == 1


async def test_fingerprint_rotation_shares_ip_allowance(enforcer):
    for _ in range(3):
        await enforcer.record(anonymous("deviceA"), success=True)
    for _ in range(2):
        await enforcer.record(anonymous("deviceB"), success=True)

    status = await enforcer.check(anonymous("deviceC"))
    assert status.used == 5
    assert status.can_generate is False

    with pytest.raises(QuotaExceeded):
        await enforcer.record(anonymous("deviceC"), success=True)


async def test_ip_usage_is_summed_across_fingerprints(enforcer, usage_repo, clock):
    day = utc_today(clock())
    for fingerprint in ("deviceA", "deviceB"):
        usage_repo.seed_anonymous(
            anonymous_id=anonymous_id_for(IP, fingerprint),
            ip_address=IP,
            fingerprint=fingerprint,
            day=day,
            generations_used=3,
        )

    status = await enforcer.check(anonymous("deviceA"))

    assert status.used == 6
    assert status.remaining == 0
    assert status.can_generate is False


async def test_other_ips_do_not_count(enforcer):
    for _ in range(5):
        await enforcer.record(anonymous(ip="198.51.100.2"), success=True)

    status = await enforcer.check(anonymous())
    assert status.used == 0


async def test_authenticated_cap_is_independent_of_anonymous(enforcer):
    for _ in range(5):
        await enforcer.record(anonymous(), success=True)

    user = authenticated()
    for expected in range(1, 11):
        result = await enforcer.record(user, success=True)
        assert result.used == expected

    with pytest.raises(QuotaExceeded) as excinfo:
        await enforcer.record(user, success=True)
    assert excinfo.value.limit == 10

    status = await enforcer.check(user)
    assert status.limit_type == LimitType.AUTHENTICATED
    assert status.is_authenticated is True
    assert status.used == 10


async def test_authenticated_log_entry_has_no_anonymous_id(enforcer, attempt_repo):
    await enforcer.record(authenticated(), success=True)

    entry = attempt_repo.entries[0]
    assert entry.user_id == "user-123"
    assert entry.anonymous_id is None
    assert entry.limit_type == LimitType.AUTHENTICATED


async def test_usage_resets_at_utc_midnight(usage_repo, attempt_repo):
    clock = FakeClock(datetime(2026, 3, 14, 23, 59, tzinfo=timezone.utc))
    enforcer = QuotaEnforcer(usage_repo, attempt_repo, make_settings(), clock=clock)
    identity = anonymous()
    for _ in range(5):
        await enforcer.record(identity, success=True)
    assert (await enforcer.check(identity)).can_generate is False

    clock.now += timedelta(minutes=2)

    status = await enforcer.check(identity)
    assert status.used == 0
    assert status.remaining == 5
    assert status.reset_time == datetime(2026, 3, 16, tzinfo=timezone.utc)


async def test_gathered_records_never_exceed_cap(enforcer, usage_repo, clock):
    identity = anonymous()

    results = await asyncio.gather(
        *[enforcer.record(identity, success=True) for _ in range(12)],
        return_exceptions=True,
    )

    accepted = [result for result in results if not isinstance(result, Exception)]
    rejected = [result for result in results if isinstance(result, QuotaExceeded)]
    assert len(accepted) == 5
    assert len(rejected) == 7
    day = utc_today(clock())
    assert await usage_repo.get_anonymous_usage(anonymous_id=identity.anonymous_id, day=day) == 5


@hypothesis_settings(max_examples=30, deadline=None)
@given(attempts=st.integers(min_value=0, max_value=20), authenticated_caller=st.booleans())
def test_accepted_records_are_min_of_attempts_and_cap(attempts: int, authenticated_caller: bool):
    async def scenario() -> int:
        clock = FakeClock(datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc))
        enforcer = QuotaEnforcer(
            InMemoryUsageRepository(),
            InMemoryAttemptLogRepository(clock=clock),
            make_settings(),
            clock=clock,
        )
        identity = authenticated() if authenticated_caller else anonymous()
        results = await asyncio.gather(
            *[enforcer.record(identity, success=True) for _ in range(attempts)],
            return_exceptions=True,
        )
        assert all(
            isinstance(result, QuotaExceeded)
            for result in results
            if isinstance(result, Exception)
        )
        status = await enforcer.check(identity)
        assert 0 <= status.used <= status.limit
        return sum(1 for result in results if not isinstance(result, Exception))

    cap = 10 if authenticated_caller else 5
    assert asyncio.run(scenario()) == min(attempts, cap)


class SlowUsageRepository(InMemoryUsageRepository):
    async def get_anonymous_usage(self, *, anonymous_id, day):
        await asyncio.sleep(1)
        return 0


async def test_store_timeout_maps_to_upstream_unavailable(attempt_repo, clock):
    enforcer = QuotaEnforcer(
        SlowUsageRepository(),
        attempt_repo,
        make_settings(store_timeout_seconds=0.01),
        clock=clock,
    )

    with pytest.raises(UpstreamUnavailable) as excinfo:
        await enforcer.check(anonymous())
    assert excinfo.value.to_dict() == {
        "error": "Usage service temporarily unavailable",
        "fallback": True,
    }


async def test_custom_limits_are_honoured(usage_repo, attempt_repo, clock):
    enforcer = QuotaEnforcer(
        usage_repo,
        attempt_repo,
        make_settings(anonymous_daily_limit=2),
        clock=clock,
    )
    identity = anonymous()
    await enforcer.record(identity, success=True)
    await enforcer.record(identity, success=True)

    with pytest.raises(QuotaExceeded):
        await enforcer.record(identity, success=True)


class RacingUsageRepository(InMemoryUsageRepository):
    """Lets another recorder land between the enforcer's read and its write."""

    def __init__(self, rival: Identity | None = None) -> None:
        super().__init__()
        self.rival = rival

    async def increment_user_usage(self, *, user_id, day, limit, now):
        await super().increment_user_usage(user_id=user_id, day=day, limit=limit, now=now)
        return await super().increment_user_usage(user_id=user_id, day=day, limit=limit, now=now)

    async def increment_anonymous_usage(self, **kwargs):
        rival = self.rival
        await super().increment_anonymous_usage(
            **{
                **kwargs,
                "anonymous_id": rival.anonymous_id,
                "fingerprint": rival.fingerprint,
            }
        )
        return await super().increment_anonymous_usage(**kwargs)


async def test_record_reports_count_stored_by_the_write(attempt_repo, clock):
    enforcer = QuotaEnforcer(RacingUsageRepository(), attempt_repo, make_settings(), clock=clock)

    result = await enforcer.record(authenticated(), success=True)

    assert result.used == 2
    assert result.remaining == 8
    entry = attempt_repo.entries[-1]
    assert (entry.generations_before, entry.generations_after) == (1, 2)


async def test_anonymous_record_reports_ip_total_after_write(attempt_repo, clock):
    repo = RacingUsageRepository(rival=anonymous("deviceB"))
    enforcer = QuotaEnforcer(repo, attempt_repo, make_settings(), clock=clock)

    result = await enforcer.record(anonymous("deviceA"), success=True)

    assert result.used == 2
    assert result.remaining == 3
    entry = attempt_repo.entries[-1]
    assert (entry.generations_before, entry.generations_after) == (1, 2)
