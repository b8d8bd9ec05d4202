"""Typed views over on-chain records read by this package."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

from solders.pubkey import Pubkey


class PositionDirection(str, Enum):
    """Trade direction; values are the IDL enum variant names."""

    LONG = "Long"
    SHORT = "Short"

    @classmethod
    def _missing_(cls, value: object) -> Optional["PositionDirection"]:
        # accept "long" / "LONG" as well as the variant name
        if isinstance(value, str):
            for member in cls:
                if member.value.lower() == value.lower():
                    return member
        return None


@dataclass(frozen=True)
class ManagePositionOptionalAccounts:
    """
    Toggle record telling the program which optional accounts trail the
    required ones. Field order is the order of the trailing accounts.
    """

    discount_token: bool = False
    referrer: bool = False

    def set_count(self) -> int:
        return int(self.discount_token) + int(self.referrer)


def _field(obj: Any, *names: str, default: Any = None) -> Any:
    """Read the first present attribute/key out of an anchorpy Container or dict."""
    for name in names:
        if isinstance(obj, dict):
            if name in obj:
                return obj[name]
        elif hasattr(obj, name):
            return getattr(obj, name)
    return default


def _disc_from_name(name: str) -> bytes:
    # Anchor discriminator = first 8 bytes of sha256(b"account:" + name)
    return hashlib.sha256(f"account:{name}".encode("utf-8")).digest()[:8]


def _pubkey_from_slice(raw: bytes, offset: int) -> Pubkey:
    return Pubkey.from_bytes(raw[offset:offset + 32])


CONFIG_DISCRIMINATOR = _disc_from_name("Config")
CONFIG_ACCOUNT_SIZE = 8 + 32 * 3 + 1 + 32 * 2


@dataclass(frozen=True)
class Config:
    admin: Pubkey
    collateral_vault: Pubkey
    authority: Pubkey
    authority_nonce: int
    clearing_house_user: Pubkey
    clearing_house_user_positions: Pubkey

    @classmethod
    def decode(cls, raw: bytes) -> "Config":
        """Decode the raw account data written by ``initialize``."""
        if len(raw) < CONFIG_ACCOUNT_SIZE:
            raise ValueError(f"Config account too short ({len(raw)}B < {CONFIG_ACCOUNT_SIZE}B)")
        if raw[:8] != CONFIG_DISCRIMINATOR:
            raise ValueError("account is not a drift_client Config (discriminator mismatch)")
        off = 8
        admin = _pubkey_from_slice(raw, off); off += 32
        collateral_vault = _pubkey_from_slice(raw, off); off += 32
        authority = _pubkey_from_slice(raw, off); off += 32
        authority_nonce = raw[off]; off += 1
        ch_user = _pubkey_from_slice(raw, off); off += 32
        ch_user_positions = _pubkey_from_slice(raw, off)
        return cls(
            admin=admin,
            collateral_vault=collateral_vault,
            authority=authority,
            authority_nonce=authority_nonce,
            clearing_house_user=ch_user,
            clearing_house_user_positions=ch_user_positions,
        )


@dataclass(frozen=True)
class ClearingHouseState:
    """The slice of the clearing house state account this package needs."""

    admin: Pubkey
    collateral_mint: Pubkey
    collateral_vault: Pubkey
    collateral_vault_authority: Pubkey
    insurance_vault: Pubkey
    insurance_vault_authority: Pubkey
    markets: Pubkey
    deposit_history: Pubkey
    trade_history: Pubkey
    funding_payment_history: Pubkey
    funding_rate_history: Pubkey

    @classmethod
    def from_account(cls, acc: Any) -> "ClearingHouseState":
        return cls(
            admin=_field(acc, "admin"),
            collateral_mint=_field(acc, "collateral_mint", "collateralMint"),
            collateral_vault=_field(acc, "collateral_vault", "collateralVault"),
            collateral_vault_authority=_field(acc, "collateral_vault_authority", "collateralVaultAuthority"),
            insurance_vault=_field(acc, "insurance_vault", "insuranceVault"),
            insurance_vault_authority=_field(acc, "insurance_vault_authority", "insuranceVaultAuthority"),
            markets=_field(acc, "markets"),
            deposit_history=_field(acc, "deposit_history", "depositHistory"),
            trade_history=_field(acc, "trade_history", "tradeHistory"),
            funding_payment_history=_field(acc, "funding_payment_history", "fundingPaymentHistory"),
            funding_rate_history=_field(acc, "funding_rate_history", "fundingRateHistory"),
        )


@dataclass(frozen=True)
class Market:
    market_index: int
    initialized: bool
    oracle: Pubkey

    @classmethod
    def from_account(cls, market_index: int, acc: Any) -> "Market":
        amm = _field(acc, "amm")
        return cls(
            market_index=market_index,
            initialized=bool(_field(acc, "initialized", default=False)),
            oracle=_field(amm, "oracle"),
        )


@dataclass(frozen=True)
class UserAccount:
    authority: Pubkey
    collateral: int
    positions: Pubkey
    cumulative_deposits: int = 0
    total_fee_paid: int = 0

    @classmethod
    def from_account(cls, acc: Any) -> "UserAccount":
        return cls(
            authority=_field(acc, "authority"),
            collateral=int(_field(acc, "collateral", default=0)),
            positions=_field(acc, "positions"),
            cumulative_deposits=int(_field(acc, "cumulative_deposits", "cumulativeDeposits", default=0)),
            total_fee_paid=int(_field(acc, "total_fee_paid", "totalFeePaid", default=0)),
        )


@dataclass(frozen=True)
class UserPosition:
    market_index: int
    base_asset_amount: int
    quote_asset_amount: int
    last_cumulative_funding_rate: int = 0
    last_funding_rate_ts: int = 0

    @property
    def is_open(self) -> bool:
        return self.base_asset_amount != 0

    @classmethod
    def from_account(cls, acc: Any) -> "UserPosition":
        return cls(
            market_index=int(_field(acc, "market_index", "marketIndex", default=0)),
            base_asset_amount=int(_field(acc, "base_asset_amount", "baseAssetAmount", default=0)),
            quote_asset_amount=int(_field(acc, "quote_asset_amount", "quoteAssetAmount", default=0)),
            last_cumulative_funding_rate=int(
                _field(acc, "last_cumulative_funding_rate", "lastCumulativeFundingRate", default=0)
            ),
            last_funding_rate_ts=int(_field(acc, "last_funding_rate_ts", "lastFundingRateTs", default=0)),
        )


@dataclass(frozen=True)
class UserPositionsAccount:
    user: Optional[Pubkey]
    positions: List[UserPosition] = field(default_factory=list)

    @classmethod
    def from_account(cls, acc: Any) -> "UserPositionsAccount":
        return cls(
            user=_field(acc, "user"),
            positions=[UserPosition.from_account(p) for p in (_field(acc, "positions") or [])],
        )


__all__ = [
    "PositionDirection",
    "ManagePositionOptionalAccounts",
    "Config",
    "CONFIG_DISCRIMINATOR",
    "ClearingHouseState",
    "Market",
    "UserAccount",
    "UserPosition",
    "UserPositionsAccount",
]
