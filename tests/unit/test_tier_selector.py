"""
Unit Tests for the Tier Selector

Run with:
    pytest tests/unit/test_tier_selector.py -v
"""

import itertools

import pytest

from core.schemas import ConnectionState, ConnectionStatus, FetchResult, Tier
from core.tier_selector import explain_selection, select_tier
from core.utils.time import EPOCH


def result(tier, state=ConnectionState.CONNECTED, records=1, active=None, error=None):
    if active is None:
        active = 1 if state == ConnectionState.CONNECTED else 0
    return FetchResult(
        tier=tier,
        status=ConnectionStatus(provider=tier.name.lower(), state=state, active_connections=active, last_error=error),
        payload=[{"ticker": "BTCUSDT"}] * records,
        fetched_at=EPOCH,
    )


class TestSelectTier:
    """Priority rule: exchange, then REST, then static"""

    def test_no_inputs_selects_static(self):
        assert select_tier(None, None) == Tier.STATIC

    def test_exchange_with_links_and_records_wins(self):
        exchange = result(Tier.EXCHANGE, active=2, records=3)
        rest = result(Tier.REST, records=4)
        assert select_tier(exchange, rest) == Tier.EXCHANGE

    def test_degraded_exchange_with_records_still_wins(self):
        exchange = result(Tier.EXCHANGE, state=ConnectionState.DEGRADED, active=1, records=2)
        assert select_tier(exchange, None) == Tier.EXCHANGE

    def test_exchange_without_active_connections_falls_to_rest(self):
        exchange = result(Tier.EXCHANGE, active=0, records=3)
        rest = result(Tier.REST, records=4)
        assert select_tier(exchange, rest) == Tier.REST

    def test_exchange_without_records_falls_to_rest(self):
        exchange = result(Tier.EXCHANGE, active=2, records=0)
        rest = result(Tier.REST, records=4)
        assert select_tier(exchange, rest) == Tier.REST

    def test_exchange_in_error_falls_through_even_with_records(self):
        exchange = result(Tier.EXCHANGE, state=ConnectionState.ERROR, active=1, records=3)
        assert select_tier(exchange, None) == Tier.STATIC

    def test_rest_error_falls_to_static(self):
        exchange = result(Tier.EXCHANGE, state=ConnectionState.ERROR, active=0, records=0)
        rest = result(Tier.REST, state=ConnectionState.ERROR, records=0, error="HTTP 500")
        assert select_tier(exchange, rest) == Tier.STATIC

    def test_rest_connected_without_records_falls_to_static(self):
        assert select_tier(None, result(Tier.REST, records=0)) == Tier.STATIC

    def test_every_combination_yields_exactly_one_tier(self):
        states = list(ConnectionState)
        for ex_state, rest_state, ex_active, ex_records, rest_records in itertools.product(
            states, states, (0, 1, 3), (0, 2), (0, 2)
        ):
            exchange = result(Tier.EXCHANGE, state=ex_state, active=ex_active, records=ex_records)
            rest = result(Tier.REST, state=rest_state, records=rest_records)
            tier = select_tier(exchange, rest)

            exchange_ok = ex_active > 0 and ex_records > 0 and ex_state != ConnectionState.ERROR
            rest_ok = rest_state == ConnectionState.CONNECTED and rest_records > 0
            expected = Tier.EXCHANGE if exchange_ok else Tier.REST if rest_ok else Tier.STATIC
            assert tier == expected

    def test_selection_is_repeatable(self):
        exchange = result(Tier.EXCHANGE, active=0)
        rest = result(Tier.REST, records=2)
        assert {select_tier(exchange, rest) for _ in range(10)} == {Tier.REST}


class TestExplainSelection:
    """explain_selection agrees with select_tier and gives a reason"""

    def test_reason_for_exchange(self):
        tier, reason = explain_selection(result(Tier.EXCHANGE, active=2, records=3), None)
        assert tier == Tier.EXCHANGE
        assert "2 exchange link(s)" in reason

    def test_reason_for_rest(self):
        tier, reason = explain_selection(result(Tier.EXCHANGE, active=0), result(Tier.REST, records=4))
        assert tier == Tier.REST
        assert "no active connections" in reason

    @pytest.mark.parametrize("rest, fragment", [
        (None, "REST tier not fetched"),
        (result(Tier.REST, state=ConnectionState.ERROR, records=0, error="HTTP 500"), "HTTP 500"),
    ])
    def test_reason_for_static(self, rest, fragment):
        tier, reason = explain_selection(None, rest)
        assert tier == Tier.STATIC
        assert fragment in reason
