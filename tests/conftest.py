from datetime import datetime, timedelta, timezone

import pytest

from wanderpaws.application.services.plan_catalog import PlanCatalog
from wanderpaws.application.services.subscription_ledger import SubscriptionLedger
from wanderpaws.domain.models import PaymentConfirmation, Plan
from wanderpaws.infrastructure.persistence.memory import InMemoryPersistence
from wanderpaws.infrastructure.persistence.sqlite import SQLitePersistence

NEW_YEAR = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FrozenClock(NEW_YEAR)


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        persistence = InMemoryPersistence()
    else:
        persistence = SQLitePersistence(tmp_path / "ledger.db")
    yield persistence
    persistence.close()


@pytest.fixture
def plan_factory():
    def build(**overrides) -> Plan:
        values = {
            "id": "basic",
            "name": "Basic",
            "description": "Four walks a month",
            "walk_credits": 4,
            "walk_duration": 60,
            "price": 2999,
            "validity_period": 30,
            "is_active": True,
        }
        values.update(overrides)
        return Plan(**values)

    return build


@pytest.fixture
def basic_plan(store, plan_factory):
    return store.save_plan(plan_factory())


@pytest.fixture
def catalog(store):
    return PlanCatalog(store)


@pytest.fixture
def ledger(store, catalog, clock):
    return SubscriptionLedger(store, catalog, clock=clock)


@pytest.fixture
def paid():
    return PaymentConfirmation(success=True, reference="pi_test", amount=2999)
