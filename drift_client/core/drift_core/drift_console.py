"""
drift-client console entrypoint.

    drift-client addresses
    drift-client health
    drift-client initialize
    drift-client init-user
    drift-client deposit 1000000 <collateral token account>
    drift-client open long 1000000 --market 0
    drift-client close --market 0
    drift-client show-positions

Settings come from the environment / ``.env`` (see ``DriftClientConfig``).
"""

from __future__ import annotations

import argparse
import asyncio
from typing import Optional, Sequence

from solders.pubkey import Pubkey

from drift_client.config.rpc import redacted
from drift_client.core.logging import configure_console_log
from drift_client.perps.errors import DriftClientError
from drift_client.perps.models import PositionDirection

from .drift_config import DriftClientConfig
from .drift_core import DriftCore
from .views import kv_table, panel, rows_table

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _pubkey(value: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"not a base58 public key: {value!r}") from e


def _amount(value: str) -> int:
    try:
        n = int(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"amount must be an integer in base units: {value!r}") from e
    if n < 0:
        raise argparse.ArgumentTypeError("amount must not be negative")
    return n


def _add_optional_accounts(p: argparse.ArgumentParser) -> None:
    p.add_argument("--market", type=int, default=0, help="Market index (default 0)")
    p.add_argument("--discount-token", type=_pubkey, default=None, help="Fee discount token account")
    p.add_argument("--referrer", type=_pubkey, default=None, help="Referrer user account")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="drift-client", description="drift_client program console.")
    parser.add_argument("--env-file", default=None, help="Load settings from this .env file")
    parser.add_argument("--debug", action="store_true", help="Verbose logging (descriptor audits)")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("show-config", help="Print the resolved connection settings.")
    sub.add_parser("addresses", help="Print every derived program address (offline).")
    sub.add_parser("health", help="Check RPC reachability and the signer file.")
    sub.add_parser("initialize", help="Create the Config account and collateral vault.")
    sub.add_parser("init-user", help="Create the clearing house user owned by the program authority.")

    for name, help_text in (
        ("deposit", "Move collateral from a token account into the clearing house."),
        ("withdraw", "Move collateral from the clearing house back to a token account."),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("amount", type=_amount, help="Amount in collateral base units")
        p.add_argument("collateral_account", type=_pubkey, help="Admin collateral token account")

    op = sub.add_parser("open", help="Open or increase a position.")
    op.add_argument("direction", choices=["long", "short"])
    op.add_argument("amount", type=_amount, help="Quote asset amount")
    op.add_argument("--limit-price", type=_amount, default=None, help="Limit price (omit for no limit)")
    _add_optional_accounts(op)

    cp = sub.add_parser("close", help="Close the position in a market.")
    _add_optional_accounts(cp)

    sub.add_parser("show-user", help="Print the clearing house user account.")
    sub.add_parser("show-positions", help="Print the user positions table.")
    return parser


def _show_signature(title: str, sig: object) -> None:
    kv_table(title, {"signature": sig})


# ---------------------------------------------------------------------------
# Async execution paths
# ---------------------------------------------------------------------------


async def _run_connected(args: argparse.Namespace, core: DriftCore) -> int:
    async with core:
        client = core.client

        if args.command == "initialize":
            _show_signature("initialize", await client.initialize())
            return 0

        if args.command == "init-user":
            _show_signature("init-user", await client.initialize_user())
            return 0

        if args.command == "deposit":
            _show_signature("deposit", await client.deposit_collateral(args.amount, args.collateral_account))
            return 0

        if args.command == "withdraw":
            _show_signature("withdraw", await client.withdraw_collateral(args.amount, args.collateral_account))
            return 0

        if args.command == "open":
            sig = await client.open_position(
                PositionDirection.LONG if args.direction == "long" else PositionDirection.SHORT,
                args.amount,
                args.market,
                limit_price=args.limit_price,
                discount_token=args.discount_token,
                referrer=args.referrer,
            )
            _show_signature("open", sig)
            return 0

        if args.command == "close":
            sig = await client.close_position(
                args.market, discount_token=args.discount_token, referrer=args.referrer
            )
            _show_signature("close", sig)
            return 0

        if args.command == "show-user":
            user = await client.get_user_account()
            kv_table(
                "Clearing house user",
                {
                    "address": client.get_clearing_house_user_account_public_key(),
                    "authority": user.authority,
                    "collateral": user.collateral,
                    "cumulative_deposits": user.cumulative_deposits,
                    "total_fee_paid": user.total_fee_paid,
                    "positions": user.positions,
                },
            )
            return 0

        # show-positions; argparse only lets known commands through
        table = await client.get_user_positions_account()
        rows = [
            (i, p.market_index, p.base_asset_amount, p.quote_asset_amount, "open" if p.is_open else "-")
            for i, p in enumerate(table.positions)
            if p.is_open or p.quote_asset_amount
        ]
        rows_table("Positions", ["slot", "market", "base", "quote", "state"], rows)
        return 0


async def _run_async_cli(args: argparse.Namespace, core: DriftCore) -> int:
    if args.command == "show-config":
        cfg = core.config
        kv_table(
            "drift-client config",
            {
                "rpc_url": redacted(cfg.rpc_url),
                "commitment": cfg.commitment,
                "program_id": cfg.program_id,
                "clearing_house_program_id": cfg.clearing_house_program_id,
                "clearing_house_idl_path": cfg.clearing_house_idl_path,
                "signer_path": cfg.signer_path,
                "skip_preflight": cfg.skip_preflight,
                "compute_unit_limit": cfg.compute_unit_limit,
                "compute_unit_price": cfg.compute_unit_price,
            },
        )
        return 0

    if args.command == "addresses":
        kv_table("Derived addresses", core.derived_addresses())
        return 0

    if args.command == "health":
        payload = await core.health_check()
        kv_table("drift-client health", payload)
        return 0 if payload.get("rpc_ok") and payload.get("signer_ok") else 1

    return await _run_connected(args, core)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    configure_console_log(args.debug)

    try:
        core = DriftCore(DriftClientConfig.from_env(args.env_file))
        return asyncio.run(_run_async_cli(args, core))
    except (DriftClientError, FileNotFoundError, ValueError) as e:
        panel("drift-client error", f"{type(e).__name__}: {e}")
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
