import asyncio
import fnmatch
from datetime import date
from typing import Optional

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from config.settings import Settings
from models.entities import (
    ActivityPreferences,
    AvailabilityConstraints,
    BudgetRange,
    CandidateGroup,
    CompatibilityProfile,
    ExperienceLevel,
    GroupMember,
    PersonalityTraits,
    TravelPreferences,
)


class FakeClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """In-memory stand-in for redis.asyncio.Redis(decode_responses=True)."""

    def __init__(self, clock=None, delay: float = 0.0):
        self.clock = clock or FakeClock()
        self.delay = delay
        self.store: dict[str, tuple[str, float]] = {}
        self.closed = False
        self.down = False

    async def _io(self):
        if self.down:
            raise RedisConnectionError("connection refused")
        if self.delay:
            await asyncio.sleep(self.delay)

    async def ping(self):
        if self.down:
            raise RedisConnectionError("connection refused")
        return True

    async def get(self, key):
        await self._io()
        item = self.store.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at <= self.clock():
            del self.store[key]
            return None
        return value

    async def setex(self, key, ttl, value):
        await self._io()
        self.store[key] = (value, self.clock() + ttl)
        return True

    async def scan_iter(self, match=None, count=None):
        await self._io()
        for key in list(self.store):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def delete(self, *keys):
        await self._io()
        return sum(1 for key in keys if self.store.pop(key, None) is not None)

    async def aclose(self):
        self.closed = True


class BrokenRedis(FakeRedis):
    def __init__(self, clock=None):
        super().__init__(clock)
        self.down = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        redis_enabled=False,
        catalog_file=tmp_path / "groups.json",
        log_file=tmp_path / "logs" / "app.log",
    )


def _build(
    model,
    user_id: str,
    *,
    energy: float = 60,
    social: float = 60,
    adventure: float = 60,
    risk: float = 50,
    adventure_style: Optional[str] = "explorer",
    budget_preference: Optional[str] = "moderate",
    planning_style: Optional[str] = "flexible",
    group_preference: Optional[str] = "small_group",
    experience: Optional[float] = 3,
    budget: Optional[tuple[float, float]] = (1000, 2000),
    currency: str = "USD",
    flexibility: float = 0.2,
    preferred=("hiking", "photography"),
    must_have=(),
    deal_breakers=(),
    disliked=(),
    availability: Optional[AvailabilityConstraints] = None,
    age: Optional[int] = None,
    country: Optional[str] = None,
    **extra,
):
    return model(
        user_id=user_id,
        personality_traits=PersonalityTraits(
            energy_level=energy,
            social_preference=social,
            adventure_style=adventure,
            risk_tolerance=risk,
        ),
        travel_preferences=TravelPreferences(
            adventure_style=adventure_style,
            budget_preference=budget_preference,
            planning_style=planning_style,
            group_preference=group_preference,
        ),
        experience_level=ExperienceLevel(overall=experience) if experience is not None else None,
        budget_range=(
            BudgetRange(min=budget[0], max=budget[1], currency=currency, flexibility=flexibility)
            if budget is not None else None
        ),
        activity_preferences=ActivityPreferences(
            preferred=list(preferred),
            must_have=list(must_have),
            deal_breakers=list(deal_breakers),
            disliked=list(disliked),
        ),
        availability=availability,
        age=age,
        home_country=country,
        **extra,
    )


# Far from the defaults on every dimension; scores ~39 against make_profile()
OPPOSITE = dict(
    energy=10, social=5, adventure=10, risk=5,
    adventure_style="comfort", budget_preference="luxury",
    planning_style="detailed", group_preference="large_group",
    experience=5, budget=(5000, 8000), preferred=("spa", "shopping"),
)


@pytest.fixture
def make_profile():
    def factory(user_id: str = "user_1", **kwargs) -> CompatibilityProfile:
        return _build(CompatibilityProfile, user_id, **kwargs)
    return factory


@pytest.fixture
def make_member():
    def factory(user_id: str, name: Optional[str] = None, **kwargs) -> GroupMember:
        return _build(GroupMember, user_id, name=name or user_id.title(), **kwargs)
    return factory


@pytest.fixture
def opposite():
    return dict(OPPOSITE)


@pytest.fixture
def make_group(make_member):
    def factory(group_id: str, members=None, size: int = 3, **kwargs) -> CandidateGroup:
        if members is None:
            members = [make_member(f"{group_id}_m{i}") for i in range(size)]
        kwargs.setdefault("start_date", date(2027, 5, 1))
        kwargs.setdefault("duration_days", 7)
        kwargs.setdefault("budget_range", BudgetRange(min=1000, max=2000))
        kwargs.setdefault("activities", ["hiking", "photography"])
        return CandidateGroup(id=group_id, members=members, **kwargs)
    return factory
