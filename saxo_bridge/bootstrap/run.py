"""
Command-line entry point for manual checks against the broker.

Usage:
    python -m saxo_bridge.bootstrap.run resolve AAPL --asset_class equity
    python -m saxo_bridge.bootstrap.run resolve AAPL --asset_class option --underlying AAPL \
        --expiry 2026-12-18 --strike 200 --right call
    python -m saxo_bridge.bootstrap.run history EURUSD --asset_class forex --unit hour --days 30
    python -m saxo_bridge.bootstrap.run stream AAPL,MSFT --seconds 60
    python -m saxo_bridge.bootstrap.run check
    python -m saxo_bridge.bootstrap.run authorize
"""

import argparse
import asyncio
import logging
import signal
from datetime import date, datetime, timedelta, timezone

from ..auth.pkce import (
    build_authorization_url,
    generate_code_challenge,
    generate_code_verifier,
    generate_state,
)
from ..config import get_settings
from ..errors import SaxoError
from ..session import SaxoSession
from ..symbols.identity import AssetClass, InstrumentIdentity, OptionRight


logger = logging.getLogger(__name__)


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Saxo bridge - market data and symbol resolution checks",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    def add_identity_args(p):
        p.add_argument("ticker", help="Engine ticker (e.g. AAPL, EURUSD)")
        p.add_argument(
            "--asset_class",
            default="equity",
            choices=[c.value for c in AssetClass],
            help="Asset class (default: equity)",
        )
        p.add_argument("--market", default="usa", help="Market (default: usa)")
        p.add_argument("--underlying", help="Underlying ticker for options, root symbol for futures")
        p.add_argument("--expiry", help="Expiry date YYYY-MM-DD (options/futures)")
        p.add_argument("--strike", type=float, help="Option strike")
        p.add_argument("--right", choices=["call", "put"], help="Option right")

    p_resolve = sub.add_parser("resolve", help="Resolve an instrument to a broker Uic")
    add_identity_args(p_resolve)

    p_history = sub.add_parser("history", help="Fetch historical bars")
    add_identity_args(p_history)
    p_history.add_argument("--unit", default="minute", help="minute, hour or day (default: minute)")
    p_history.add_argument("--days", type=int, default=1, help="Days back from now (default: 1)")

    p_stream = sub.add_parser("stream", help="Print live quotes")
    p_stream.add_argument("tickers", help="Comma-separated broker tickers")
    p_stream.add_argument("--seconds", type=float, default=30.0, help="Stop after N seconds (default: 30)")

    sub.add_parser("check", help="Verify credentials by fetching the client details")
    sub.add_parser("authorize", help="Print a PKCE authorization URL and verifier")

    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def build_identity(args) -> InstrumentIdentity:
    asset_class = AssetClass(args.asset_class)
    expiry = date.fromisoformat(args.expiry) if args.expiry else None
    root = None
    underlying = None
    if asset_class == AssetClass.FUTURE:
        root = args.underlying
    elif args.underlying:
        underlying_class = {
            AssetClass.OPTION: AssetClass.EQUITY,
            AssetClass.INDEX_OPTION: AssetClass.INDEX,
        }.get(asset_class, asset_class)
        underlying = InstrumentIdentity(ticker=args.underlying, asset_class=underlying_class, market=args.market)
    return InstrumentIdentity(
        ticker=args.ticker,
        asset_class=asset_class,
        market=args.market,
        expiry=expiry,
        strike=args.strike,
        right=OptionRight.parse(args.right) if args.right else None,
        underlying=underlying,
        root=root,
    )


async def run_resolve(saxo: SaxoSession, args) -> None:
    identity = build_identity(args)
    broker_id = await saxo.resolve(identity)
    print(f"{identity} -> Uic {broker_id.uic} ({broker_id.asset_type.value})")


async def run_history(saxo: SaxoSession, args) -> None:
    identity = build_identity(args)
    end = datetime.now(timezone.utc)
    start = end - timedelta(days=args.days)
    failed = []

    def on_window(result):
        if result.failed:
            failed.append(result)

    count = 0
    async for bar in saxo.get_history(identity, args.unit, start, end, on_window=on_window):
        count += 1
        print(f"{bar.ts.isoformat()} O={bar.open} H={bar.high} L={bar.low} C={bar.close} V={bar.volume}")

    print(f"✓ {count} bars for {identity}")
    if failed:
        print(f"⚠ {len(failed)} window(s) failed and were skipped")


async def run_check(saxo: SaxoSession, args) -> None:
    details = await saxo.check_connection()
    print(f"✓ Connected: client {details.client_key}, account {details.default_account_id} ({details.default_currency})")


async def run_stream(saxo: SaxoSession, args) -> None:
    tickers = [t.strip() for t in args.tickers.split(",") if t.strip()]
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    timer = loop.call_later(args.seconds, stop_event.set)
    sigint_installed = False
    try:
        loop.add_signal_handler(signal.SIGINT, stop_event.set)
        sigint_installed = True
    except NotImplementedError:
        pass  # Windows

    try:
        async for quote in saxo.stream_quotes(tickers, stop_event):
            print(
                f"{quote.instrument_id} bid={quote.bid}x{quote.bid_size} ask={quote.ask}x{quote.ask_size} "
                f"last={quote.last} oi={quote.open_interest}{' (delayed)' if quote.is_delayed else ''}"
            )
    finally:
        timer.cancel()
        if sigint_installed:
            loop.remove_signal_handler(signal.SIGINT)


def run_authorize() -> None:
    settings = get_settings()
    verifier = generate_code_verifier()
    url = build_authorization_url(
        settings.auth_base_url,
        settings.app_key,
        settings.redirect_uri,
        generate_code_challenge(verifier),
        generate_state(),
    )
    print(f"Open this URL and approve access:\n  {url}")
    print(f"Then set SAXO_AUTHORIZATION_CODE=<code> and SAXO_CODE_VERIFIER={verifier}")


async def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.command == "authorize":
        run_authorize()
        return 0

    handlers = {
        "check": run_check,
        "resolve": run_resolve,
        "history": run_history,
        "stream": run_stream,
    }
    try:
        async with SaxoSession(get_settings()) as saxo:
            await handlers[args.command](saxo, args)
    except SaxoError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    except ValueError as e:
        logger.error(f"Invalid arguments: {e}")
        return 2
    except Exception as e:
        logger.error(f"{args.command} crashed: {e}", exc_info=True)
        return 1
    return 0


def cli() -> None:
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
