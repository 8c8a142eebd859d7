"""Tests for click recording and signup attribution."""

from datetime import datetime, timedelta

import pytest

from affiliate_engine.errors import UnknownAffiliateCode
from affiliate_engine.tracking.models import Click, Conversion


def _now() -> datetime:
    return datetime(2026, 3, 2, 12, 0, 0)


def _clicks(database, affiliate_id: int) -> list[Click]:
    with database.session() as session:
        return session.query(Click).filter(Click.affiliate_id == affiliate_id).order_by(Click.id).all()


class TestRecordClick:
    def test_unknown_code_rejected(self, engine) -> None:
        with pytest.raises(UnknownAffiliateCode) as exc_info:
            engine.record_click("NOPE123", now=_now())
        assert exc_info.value.code == "NOPE123"

    def test_pending_affiliate_code_rejected(self, engine, make_affiliate) -> None:
        affiliate = make_affiliate(approve=False)
        with pytest.raises(UnknownAffiliateCode):
            engine.record_click(affiliate.code, now=_now())

    def test_code_is_case_insensitive(self, engine, database, make_affiliate) -> None:
        affiliate = make_affiliate()
        engine.record_click(affiliate.code.lower(), now=_now())
        assert len(_clicks(database, affiliate.id)) == 1

    def test_clicks_are_never_deduplicated(self, engine, database, make_affiliate) -> None:
        affiliate = make_affiliate()
        first = engine.record_click(affiliate.code, now=_now(), ip_address="10.0.0.1")
        second = engine.record_click(affiliate.code, now=_now(), ip_address="10.0.0.1")
        assert first != second
        clicks = _clicks(database, affiliate.id)
        assert len(clicks) == 2
        assert all(c.user_id is None and not c.converted for c in clicks)

    def test_metadata_is_stored(self, engine, database, make_affiliate) -> None:
        affiliate = make_affiliate()
        engine.record_click(
            affiliate.code,
            now=_now(),
            referrer="https://blog.example",
            utm_source="newsletter",
            utm_campaign="spring",
        )
        click = _clicks(database, affiliate.id)[0]
        assert click.referrer == "https://blog.example"
        assert click.utm_source == "newsletter"
        assert click.utm_campaign == "spring"
        assert click.utm_medium is None

    def test_unknown_metadata_rejected(self, engine, make_affiliate) -> None:
        affiliate = make_affiliate()
        with pytest.raises(TypeError, match="fingerprint"):
            engine.record_click(affiliate.code, now=_now(), fingerprint="abc")

    def test_click_event_published(self, engine, make_affiliate, published) -> None:
        affiliate = make_affiliate()
        click_id = engine.record_click(affiliate.code, now=_now())
        click_events = [e for e in published if e.name == "click_recorded"]
        assert len(click_events) == 1
        assert click_events[0].payload == {"click_id": click_id, "affiliate_id": affiliate.id}


class TestLinkSignup:
    def test_binds_latest_unbound_click(self, engine, database, make_affiliate) -> None:
        affiliate = make_affiliate()
        engine.record_click(affiliate.code, now=_now() - timedelta(hours=2))
        latest = engine.record_click(affiliate.code, now=_now() - timedelta(minutes=1))

        conversion_id = engine.link_signup(affiliate.code, "user-1", now=_now())

        conversion = engine.linker.get_conversion_for_user("user-1")
        assert conversion.id == conversion_id
        assert conversion.click_id == latest
        assert conversion.affiliate_id == affiliate.id
        assert conversion.created_at == _now()

        clicks = {c.id: c for c in _clicks(database, affiliate.id)}
        assert clicks[latest].user_id == "user-1"
        assert clicks[latest].converted is True

    def test_second_user_takes_remaining_click(self, engine, make_affiliate) -> None:
        affiliate = make_affiliate()
        older = engine.record_click(affiliate.code, now=_now() - timedelta(hours=2))
        engine.record_click(affiliate.code, now=_now() - timedelta(minutes=1))

        engine.link_signup(affiliate.code, "user-1", now=_now())
        engine.link_signup(affiliate.code, "user-2", now=_now())

        assert engine.linker.get_conversion_for_user("user-2").click_id == older

    def test_no_unbound_click_is_noop(self, engine, make_affiliate) -> None:
        affiliate = make_affiliate()
        engine.record_click(affiliate.code, now=_now() - timedelta(minutes=1))
        assert engine.link_signup(affiliate.code, "user-1", now=_now()) is not None

        assert engine.link_signup(affiliate.code, "user-2", now=_now()) is None
        assert engine.linker.get_conversion_for_user("user-2") is None

    def test_user_is_bound_only_once(self, engine, database, make_affiliate) -> None:
        affiliate = make_affiliate()
        engine.record_click(affiliate.code, now=_now() - timedelta(minutes=2))
        engine.record_click(affiliate.code, now=_now() - timedelta(minutes=1))
        first = engine.link_signup(affiliate.code, "user-1", now=_now())

        assert engine.link_signup(affiliate.code, "user-1", now=_now()) is None

        with database.session() as session:
            assert session.query(Conversion).count() == 1
        assert engine.linker.get_conversion_for_user("user-1").id == first

    def test_first_attribution_wins_across_affiliates(self, engine, make_affiliate) -> None:
        first = make_affiliate("Ana")
        second = make_affiliate("Bruno")
        engine.record_click(first.code, now=_now() - timedelta(minutes=2))
        engine.record_click(second.code, now=_now() - timedelta(minutes=1))

        engine.link_signup(first.code, "user-1", now=_now())
        assert engine.link_signup(second.code, "user-1", now=_now()) is None
        assert engine.linker.get_conversion_for_user("user-1").affiliate_id == first.id

    def test_click_outside_retention_window_is_ignored(self, engine, make_affiliate) -> None:
        affiliate = make_affiliate()
        engine.record_click(affiliate.code, now=_now() - timedelta(days=31))
        assert engine.link_signup(affiliate.code, "user-1", now=_now()) is None

    def test_click_inside_retention_window_is_used(self, engine, make_affiliate) -> None:
        affiliate = make_affiliate()
        engine.record_click(affiliate.code, now=_now() - timedelta(days=29))
        assert engine.link_signup(affiliate.code, "user-1", now=_now()) is not None

    def test_unknown_code_is_noop(self, engine) -> None:
        assert engine.link_signup("MISSING99", "user-1", now=_now()) is None

    def test_suspended_affiliate_gets_no_attribution(self, engine, make_affiliate) -> None:
        affiliate = make_affiliate()
        engine.record_click(affiliate.code, now=_now() - timedelta(minutes=1))
        engine.affiliates.suspend(affiliate.id)
        assert engine.link_signup(affiliate.code, "user-1", now=_now()) is None

    def test_clicks_of_other_affiliates_are_not_used(self, engine, make_affiliate) -> None:
        clicked = make_affiliate("Ana")
        other = make_affiliate("Bruno")
        engine.record_click(clicked.code, now=_now() - timedelta(minutes=1))
        assert engine.link_signup(other.code, "user-1", now=_now()) is None

    def test_signup_event_published(self, engine, make_affiliate, published) -> None:
        affiliate = make_affiliate()
        engine.record_click(affiliate.code, now=_now() - timedelta(minutes=1))
        conversion_id = engine.link_signup(affiliate.code, "user-1", now=_now())
        linked = [e for e in published if e.name == "signup_linked"]
        assert [e.payload["conversion_id"] for e in linked] == [conversion_id]
