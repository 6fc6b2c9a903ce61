"""
Tier Selector

Pure function choosing which tier supplies the consumer-visible records.

Priority (lower tier number wins):
    1. EXCHANGE - aggregator has active upstream links, its last fetch produced
                  at least one record, and it is not in the error state
    2. REST     - REST provider is connected and its last fetch produced records
    3. STATIC   - always eligible

No hidden state and no hysteresis: the same inputs always produce the same tier,
re-evaluated on every cycle result and every status change.
"""

from typing import Optional, Tuple

from core.schemas import ConnectionState, FetchResult, Tier


def exchange_eligible(result: Optional[FetchResult]) -> bool:
    """Whether the exchange aggregator may supply records."""
    if result is None:
        return False
    status = result.status
    return (
        status.active_connections > 0
        and result.record_count > 0
        and status.state != ConnectionState.ERROR
    )


def rest_eligible(result: Optional[FetchResult]) -> bool:
    """Whether the REST provider may supply records."""
    if result is None:
        return False
    return result.status.state == ConnectionState.CONNECTED and result.record_count > 0


def select_tier(exchange: Optional[FetchResult], rest: Optional[FetchResult]) -> Tier:
    """
    Pick the active tier from the latest exchange and REST results.

    Args:
        exchange: Latest exchange aggregator result (None if never fetched / not configured)
        rest: Latest REST provider result (None if never fetched / not configured)

    Returns:
        Exactly one Tier

    Examples:
        >>> select_tier(None, None)
        <Tier.STATIC: 3>
    """
    if exchange_eligible(exchange):
        return Tier.EXCHANGE
    if rest_eligible(rest):
        return Tier.REST
    return Tier.STATIC


def explain_selection(exchange: Optional[FetchResult], rest: Optional[FetchResult]) -> Tuple[Tier, str]:
    """
    Same decision as select_tier(), with a short human-readable reason for logs/events.
    """
    tier = select_tier(exchange, rest)
    if tier == Tier.EXCHANGE:
        return tier, f"{exchange.status.active_connections} exchange link(s), {exchange.record_count} record(s)"

    if exchange is None:
        reason = "exchange tier not fetched"
    elif exchange.status.active_connections == 0:
        reason = "exchange has no active connections"
    elif exchange.status.state == ConnectionState.ERROR:
        reason = f"exchange error: {exchange.status.last_error}"
    else:
        reason = "exchange returned no records"

    if tier == Tier.REST:
        return tier, f"{reason}; REST connected with {rest.record_count} record(s)"

    if rest is None:
        rest_reason = "REST tier not fetched"
    elif rest.status.state != ConnectionState.CONNECTED:
        rest_reason = f"REST {rest.status.state.value}: {rest.status.last_error}"
    else:
        rest_reason = "REST returned no records"
    return tier, f"{reason}; {rest_reason}"
