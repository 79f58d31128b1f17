import datetime

import pytest

from reviewiq.common.cache import MemoryCacheBackend
from reviewiq.common.config import AppConfig
from reviewiq.review.cache import ReviewCache
from reviewiq.review.models import Problem, User
from reviewiq.review.repository import InMemoryReviewStore
from reviewiq.review.service import ReviewService


class FakeClock:
    """Settable time source for the service and orchestrator."""

    def __init__(self, now: datetime.datetime):
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **kwargs) -> datetime.datetime:
        self.now += datetime.timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime.datetime(2024, 3, 4, 8, 0))


@pytest.fixture
def config():
    return AppConfig(env="testing")


@pytest.fixture
def store():
    return InMemoryReviewStore()


@pytest.fixture
def backend():
    return MemoryCacheBackend(max_size=1000)


@pytest.fixture
def cache(backend, config):
    return ReviewCache(backend, config.cache)


@pytest.fixture
def service(store, cache, config, clock):
    return ReviewService(store, cache, config, clock=clock)


@pytest.fixture
async def problems(store):
    created = [
        Problem(id="p-easy", title="Two Sum", difficulty=3.0, category_name="arrays"),
        Problem(id="p-mid", title="Merge Intervals", difficulty=5.0, category_name="arrays"),
        Problem(id="p-hard", title="Median of Two Sorted Arrays", difficulty=8.0, category_name="search"),
    ]
    for problem in created:
        await store.save_problem(problem)
    return {problem.id: problem for problem in created}


@pytest.fixture
async def users(store, clock):
    created = [
        User(id=f"u{i}", last_login_at=clock.now - datetime.timedelta(minutes=10 * i))
        for i in range(1, 4)
    ]
    for user in created:
        await store.save_user(user)
    return created
