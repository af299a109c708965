#!/usr/bin/env python3
"""
Quote Fetcher

Fetches quotes for a list of symbols through the full quote service (cache,
rate limiter, failover) and prints the remaining rate budgets.

Usage:
    python scripts/fetch_quotes.py BTC ETH --asset-class crypto

    # Mixed asset classes, bypassing the fresh cache:
    python scripts/fetch_quotes.py BTC:crypto AIR.PA:equity AAPL:equity --force

    # Without Redis (memory tier only):
    python scripts/fetch_quotes.py AAPL --no-redis
"""
import asyncio
import argparse
import sys
from typing import List, Tuple

from loguru import logger

from quotefeed.config import get_settings
from quotefeed.data_providers.adapters.base import AssetClass
from quotefeed.data_providers.provider_init import create_quote_service
from quotefeed.data_providers.quote_service import AssetRecord


def parse_targets(values: List[str], default_class: AssetClass) -> List[Tuple[str, AssetClass]]:
    """Parse "SYMBOL" or "SYMBOL:asset_class" arguments."""
    targets = []
    for value in values:
        symbol, _, asset_class = value.partition(":")
        targets.append((symbol, AssetClass(asset_class.lower()) if asset_class else default_class))
    return targets


async def main(targets: List[Tuple[str, AssetClass]], force: bool, use_redis: bool) -> int:
    settings = get_settings()
    service = create_quote_service(settings, use_persistent_cache=use_redis, configure_logging=True)
    await service.start()

    records = [
        AssetRecord(id=f"{symbol}:{asset_class.value}", symbol=symbol, asset_class=asset_class)
        for symbol, asset_class in targets
    ]

    try:
        quotes = await service.get_quotes(records, force_refresh=force)
    finally:
        usage = service.get_rate_usage()
        await service.close()

    logger.info("=" * 60)
    logger.info("QUOTES")
    logger.info("=" * 60)
    missing = 0
    for record in records:
        quote = quotes.get(record.id)
        if quote is None:
            missing += 1
            logger.warning(f"{record.symbol:<12} unavailable")
            continue
        change = f"{quote.change_percent_24h:+.2f}%" if quote.change_percent_24h is not None else "n/a"
        stale = " (stale)" if quote.is_stale else ""
        logger.info(
            f"{quote.symbol:<12} {quote.price:>14} {quote.currency}  "
            f"24h {change:>8}  via {quote.provider}{stale}"
        )

    logger.info("=" * 60)
    logger.info("RATE BUDGETS")
    logger.info("=" * 60)
    for name, budget in usage.items():
        daily = f", day {budget.daily_used}/{budget.daily_allowed}" if budget.daily_allowed else ""
        logger.info(
            f"{name:<14} minute {budget.calls_used}/{budget.calls_allowed}{daily} "
            f"(resets in {budget.resets_in_seconds:.0f}s)"
        )

    return 1 if missing else 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Fetch quotes through the quote service')
    parser.add_argument('symbols', nargs='+', help='SYMBOL or SYMBOL:asset_class')
    parser.add_argument(
        '--asset-class',
        choices=[c.value for c in AssetClass],
        default=AssetClass.EQUITY.value,
        help='Asset class for symbols given without one',
    )
    parser.add_argument('--force', action='store_true', help='Bypass the fresh cache')
    parser.add_argument('--no-redis', action='store_true', help='Use the memory cache tier only')

    args = parser.parse_args()

    sys.exit(asyncio.run(main(
        targets=parse_targets(args.symbols, AssetClass(args.asset_class)),
        force=args.force,
        use_redis=not args.no_redis,
    )))
