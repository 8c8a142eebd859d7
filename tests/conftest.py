"""Shared fixtures: a throwaway SQLite ledger per test."""

from datetime import datetime, timedelta
from decimal import Decimal
from itertools import count

import pytest

from affiliate_engine.engine import AffiliateEngine
from affiliate_engine.events import EngineEvent, EventPublisher
from affiliate_engine.settings import Settings
from affiliate_engine.storage.db import Database

T0 = datetime(2026, 3, 2, 12, 0, 0)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        env="test",
        database_url=f"sqlite:///{tmp_path / 'ledger.db'}",
    )


@pytest.fixture
def database(settings):
    database = Database(settings.database_url)
    database.create_tables()
    yield database
    database.dispose()


@pytest.fixture
def publisher() -> EventPublisher:
    return EventPublisher()


@pytest.fixture
def published(publisher) -> list[EngineEvent]:
    """Every event published during the test, in order."""
    events: list[EngineEvent] = []
    publisher.subscribe(events.append)
    return events


@pytest.fixture
def engine(database, settings, publisher) -> AffiliateEngine:
    return AffiliateEngine(database, settings, publisher)


@pytest.fixture
def make_affiliate(engine):
    """Apply (and by default approve) a new affiliate."""
    numbers = count(1)

    def _make(full_name: str = "Maria Silva", approve: bool = True, custom_rate: str | None = None):
        affiliate = engine.affiliates.apply(f"partner-{next(numbers)}", full_name)
        if approve:
            affiliate = engine.affiliates.approve(affiliate.id)
        if custom_rate is not None:
            affiliate = engine.affiliates.set_custom_rate(affiliate.id, Decimal(custom_rate))
        return affiliate

    return _make


@pytest.fixture
def refer(engine):
    """Click then sign up, returning the conversion id."""

    def _refer(affiliate, user_id: str, at: datetime = T0) -> int:
        engine.record_click(affiliate.code, now=at - timedelta(minutes=5))
        conversion_id = engine.link_signup(affiliate.code, user_id, now=at)
        assert conversion_id is not None
        return conversion_id

    return _refer


@pytest.fixture
def funded(engine, make_affiliate, refer):
    """Affiliate whose confirmed commissions have exactly the given amounts.

    Commissions are created oldest first, in argument order.
    """

    def _fund(*amounts: str):
        affiliate = make_affiliate(custom_rate="100")
        user_id = f"buyer-of-{affiliate.id}"
        refer(affiliate, user_id)
        for index, amount in enumerate(amounts):
            engine.compute_commission(
                affiliate.id,
                user_id,
                "subscription",
                f"sub-{affiliate.id}-{index}",
                Decimal(amount),
                now=T0 + timedelta(days=1, hours=index),
            )
        engine.run_expiration_sweep(now=T0 + timedelta(days=91))
        return affiliate

    return _fund
