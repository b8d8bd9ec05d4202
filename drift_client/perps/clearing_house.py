"""
Clearing house client used by :class:`~drift_client.core.drift_core.drift_client.DriftClient`.

``ClearingHouse`` is the surface the drift client reads from; the concrete
``AnchorClearingHouse`` builds it on an anchorpy ``Program`` loaded from the
clearing house IDL. ``subscribe()`` takes a snapshot of the state and markets
accounts; user records are always fetched fresh.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Protocol, Union

from anchorpy import Program, Provider
from anchorpy.error import AccountDoesNotExistError
from solders.pubkey import Pubkey

from .errors import AccountNotFound, NotSubscribed
from .idl import load_anchor_idl
from .models import ClearingHouseState, Market, UserAccount, UserPositionsAccount
from .pdas import get_clearing_house_state_public_key_and_nonce, get_user_account_public_key_and_nonce

logger = logging.getLogger(__name__)


class ClearingHouse(Protocol):
    @property
    def program_id(self) -> Pubkey: ...

    @property
    def is_subscribed(self) -> bool: ...

    def get_state_public_key(self) -> Pubkey: ...

    def get_state_account(self) -> ClearingHouseState: ...

    def get_market(self, market_index: int) -> Market: ...

    def get_user_account_public_key(self, authority: Pubkey) -> Pubkey: ...

    async def fetch_user_account(self, address: Pubkey) -> UserAccount: ...

    async def fetch_user_positions_account(self, address: Pubkey) -> UserPositionsAccount: ...


class AnchorClearingHouse:
    """anchorpy-backed clearing house reader."""

    def __init__(self, program: Program) -> None:
        self.program = program
        self._state: Optional[ClearingHouseState] = None
        self._markets: List[Market] = []

    @classmethod
    def from_idl_path(
        cls, idl_path: Union[str, Path], program_id: Pubkey, provider: Provider
    ) -> "AnchorClearingHouse":
        return cls(Program(load_anchor_idl(idl_path), program_id, provider))

    @property
    def program_id(self) -> Pubkey:
        return self.program.program_id

    @property
    def is_subscribed(self) -> bool:
        return self._state is not None

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    async def subscribe(self) -> None:
        """Load the state and markets accounts into the local snapshot."""
        state_pk = self.get_state_public_key()
        logger.info("Subscribing clearing house %s (state=%s)", self.program_id, state_pk)
        raw_state = await self._fetch("State", state_pk)
        state = ClearingHouseState.from_account(raw_state)
        raw_markets = await self._fetch("Markets", state.markets)
        markets = getattr(raw_markets, "markets", None) or []
        self._markets = [Market.from_account(i, m) for i, m in enumerate(markets)]
        self._state = state
        logger.info("Clearing house subscribed; %d market slots", len(self._markets))

    async def unsubscribe(self) -> None:
        self._state = None
        self._markets = []

    # ------------------------------------------------------------------
    # Cached reads
    # ------------------------------------------------------------------

    def get_state_public_key(self) -> Pubkey:
        return get_clearing_house_state_public_key_and_nonce(self.program_id)[0]

    def get_state_account(self) -> ClearingHouseState:
        if self._state is None:
            raise NotSubscribed("clearing house state requested before subscribe()")
        return self._state

    def get_market(self, market_index: int) -> Market:
        if self._state is None:
            raise NotSubscribed("clearing house markets requested before subscribe()")
        idx = int(market_index)
        if not 0 <= idx < len(self._markets):
            raise IndexError(f"market index {idx} outside markets table ({len(self._markets)} slots)")
        return self._markets[idx]

    def get_user_account_public_key(self, authority: Pubkey) -> Pubkey:
        return get_user_account_public_key_and_nonce(self.program_id, authority)[0]

    # ------------------------------------------------------------------
    # Fresh reads
    # ------------------------------------------------------------------

    async def fetch_user_account(self, address: Pubkey) -> UserAccount:
        return UserAccount.from_account(await self._fetch("User", address))

    async def fetch_user_positions_account(self, address: Pubkey) -> UserPositionsAccount:
        return UserPositionsAccount.from_account(await self._fetch("UserPositions", address))

    async def _fetch(self, account_name: str, address: Pubkey):
        try:
            return await self.program.account[account_name].fetch(address)
        except AccountDoesNotExistError as e:
            raise AccountNotFound(account_name, address) from e


__all__ = ["ClearingHouse", "AnchorClearingHouse"]
