from __future__ import annotations

import logging
from typing import Optional

from anchorpy import Provider
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from drift_client.perps.clearing_house import ClearingHouse
from drift_client.perps.constants import (
    NO_LIMIT_PRICE,
    PRIMARY_POSITION_SLOT,
    RENT_SYSVAR,
    SYSTEM_PROGRAM,
    TOKEN_PROGRAM,
)
from drift_client.perps.errors import AccountNotFound, InvalidInvocation, NotSubscribed
from drift_client.perps.invocation import (
    InvocationDescriptor,
    ProgramInterface,
    manage_position_optional_accounts,
)
from drift_client.perps.models import (
    Config,
    PositionDirection,
    UserAccount,
    UserPosition,
    UserPositionsAccount,
)
from drift_client.perps.pdas import (
    get_clearing_house_authority_public_key_and_nonce,
    get_collateral_vault_authority_public_key_and_nonce,
    get_collateral_vault_public_key_and_nonce,
    get_config_public_key_and_nonce,
    get_user_account_public_key_and_nonce,
)
from drift_client.perps.transport import RpcTransport, Transport

logger = logging.getLogger(__name__)


def _position_direction(direction: object) -> PositionDirection:
    try:
        return PositionDirection(direction)
    except ValueError as e:
        raise InvalidInvocation(f"unknown position direction {direction!r}; expected long or short") from e


class DriftClient:
    """
    Client for the drift_client program.

    Every operation resolves the addresses it needs (derived, or read from the
    subscribed clearing house snapshot), assembles an
    :class:`InvocationDescriptor` and hands it to the transport. Nothing is
    cached between calls; readers always go back to the ledger.
    """

    def __init__(
        self,
        provider: Provider,
        clearing_house: ClearingHouse,
        *,
        program_id: Optional[Pubkey] = None,
        transport: Optional[Transport] = None,
        interface: Optional[ProgramInterface] = None,
    ) -> None:
        if not clearing_house.is_subscribed:
            raise NotSubscribed("ClearingHouse must be subscribed")
        if interface is not None and program_id is not None and interface.program_id != program_id:
            raise InvalidInvocation(
                f"program_id {program_id} does not match the interface program {interface.program_id}"
            )
        self.provider = provider
        self.clearing_house = clearing_house
        self.interface = interface or ProgramInterface(program_id)
        self.program_id = self.interface.program_id
        self.transport: Transport = transport or RpcTransport(provider, self.interface)

    @property
    def admin(self) -> Pubkey:
        return self.provider.wallet.public_key

    # ------------------------------------------------------------------
    # Addresses
    # ------------------------------------------------------------------

    def get_config_public_key(self) -> Pubkey:
        return get_config_public_key_and_nonce(self.program_id)[0]

    def get_collateral_vault_public_key(self) -> Pubkey:
        return get_collateral_vault_public_key_and_nonce(self.program_id)[0]

    def get_collateral_vault_authority_public_key(self) -> Pubkey:
        return get_collateral_vault_authority_public_key_and_nonce(self.program_id)[0]

    def get_authority_public_key(self) -> Pubkey:
        return get_clearing_house_authority_public_key_and_nonce(
            self.program_id, self.clearing_house.program_id
        )[0]

    def get_clearing_house_user_account_public_key(self) -> Pubkey:
        return self.clearing_house.get_user_account_public_key(self.get_authority_public_key())

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    async def get_config(self) -> Config:
        config_pk = self.get_config_public_key()
        resp = await self.provider.connection.get_account_info(config_pk)
        if resp.value is None:
            raise AccountNotFound("Config", config_pk)
        return Config.decode(bytes(resp.value.data))

    async def get_user_account(self) -> UserAccount:
        return await self.clearing_house.fetch_user_account(
            self.get_clearing_house_user_account_public_key()
        )

    async def get_user_positions_account(self) -> UserPositionsAccount:
        user_account = await self.get_user_account()
        return await self.clearing_house.fetch_user_positions_account(user_account.positions)

    async def get_primary_position(self) -> UserPosition:
        """Slot 0 of the positions table, the one single-position flows use."""
        user_account = await self.get_user_account()
        table = await self.clearing_house.fetch_user_positions_account(user_account.positions)
        if len(table.positions) <= PRIMARY_POSITION_SLOT:
            raise AccountNotFound(f"UserPositions slot {PRIMARY_POSITION_SLOT}", user_account.positions)
        return table.positions[PRIMARY_POSITION_SLOT]

    # ------------------------------------------------------------------
    # Descriptors
    # ------------------------------------------------------------------

    def get_initialize_descriptor(self) -> InvocationDescriptor:
        config_pk, config_nonce = get_config_public_key_and_nonce(self.program_id)
        collateral_vault_pk, collateral_vault_nonce = get_collateral_vault_public_key_and_nonce(
            self.program_id
        )
        state = self.clearing_house.get_state_account()
        return self.interface.describe(
            "initialize",
            [config_nonce, collateral_vault_nonce],
            {
                "admin": self.admin,
                "config": config_pk,
                "collateral_mint": state.collateral_mint,
                "collateral_vault": collateral_vault_pk,
                "authority": self.get_authority_public_key(),
                "clearing_house_state": self.clearing_house.get_state_public_key(),
                "rent": RENT_SYSVAR,
                "system_program": SYSTEM_PROGRAM,
                "token_program": TOKEN_PROGRAM,
            },
        )

    def get_initialize_user_descriptor(self) -> InvocationDescriptor:
        authority = self.get_authority_public_key()
        user_pk, user_nonce = get_user_account_public_key_and_nonce(
            self.clearing_house.program_id, authority
        )
        # fresh per call, co-signs as the new account
        user_positions = Keypair()
        return self.interface.describe(
            "initialize_user",
            [user_nonce],
            {
                "admin": self.admin,
                "config": self.get_config_public_key(),
                "clearing_house_state": self.clearing_house.get_state_public_key(),
                "clearing_house_user": user_pk,
                "clearing_house_user_positions": user_positions.pubkey(),
                "authority": authority,
                "rent": RENT_SYSVAR,
                "system_program": SYSTEM_PROGRAM,
                "clearing_house_program": self.clearing_house.program_id,
            },
            signers=[user_positions],
        )

    async def get_deposit_collateral_descriptor(
        self, amount: int, collateral_account: Pubkey
    ) -> InvocationDescriptor:
        state = self.clearing_house.get_state_account()
        user_account = await self.get_user_account()
        return self.interface.describe(
            "deposit_collateral",
            [amount],
            {
                "admin": self.admin,
                "admin_collateral_account": collateral_account,
                "config": self.get_config_public_key(),
                "collateral_vault": self.get_collateral_vault_public_key(),
                "authority": self.get_authority_public_key(),
                "clearing_house_state": self.clearing_house.get_state_public_key(),
                "clearing_house_user": self.get_clearing_house_user_account_public_key(),
                "clearing_house_collateral_vault": state.collateral_vault,
                "token_program": TOKEN_PROGRAM,
                "clearing_house_markets": state.markets,
                "clearing_house_user_positions": user_account.positions,
                "clearing_house_funding_payment_history": state.funding_payment_history,
                "clearing_house_deposit_history": state.deposit_history,
                "clearing_house_program": self.clearing_house.program_id,
            },
        )

    async def get_withdraw_collateral_descriptor(
        self, amount: int, collateral_account: Pubkey
    ) -> InvocationDescriptor:
        state = self.clearing_house.get_state_account()
        user_account = await self.get_user_account()
        return self.interface.describe(
            "withdraw_collateral",
            [amount],
            {
                "admin": self.admin,
                "admin_collateral_account": collateral_account,
                "config": self.get_config_public_key(),
                "collateral_vault": self.get_collateral_vault_public_key(),
                "authority": self.get_authority_public_key(),
                "clearing_house_state": self.clearing_house.get_state_public_key(),
                "clearing_house_user": self.get_clearing_house_user_account_public_key(),
                "clearing_house_collateral_vault": state.collateral_vault,
                "clearing_house_collateral_vault_authority": state.collateral_vault_authority,
                "clearing_house_insurance_vault": state.insurance_vault,
                "clearing_house_insurance_vault_authority": state.insurance_vault_authority,
                "token_program": TOKEN_PROGRAM,
                "clearing_house_markets": state.markets,
                "clearing_house_user_positions": user_account.positions,
                "clearing_house_funding_payment_history": state.funding_payment_history,
                "clearing_house_deposit_history": state.deposit_history,
                "clearing_house_program": self.clearing_house.program_id,
            },
        )

    async def _manage_position_accounts(self, market_index: int) -> dict:
        oracle = self.clearing_house.get_market(market_index).oracle
        state = self.clearing_house.get_state_account()
        user_account = await self.get_user_account()
        return {
            "admin": self.admin,
            "config": self.get_config_public_key(),
            "authority": self.get_authority_public_key(),
            "clearing_house_state": self.clearing_house.get_state_public_key(),
            "clearing_house_user": self.get_clearing_house_user_account_public_key(),
            "clearing_house_markets": state.markets,
            "oracle": oracle,
            "clearing_house_user_positions": user_account.positions,
            "clearing_house_funding_payment_history": state.funding_payment_history,
            "clearing_house_funding_rate_history": state.funding_rate_history,
            "clearing_house_trade_history": state.trade_history,
            "clearing_house_program": self.clearing_house.program_id,
        }

    async def get_open_position_descriptor(
        self,
        direction: PositionDirection,
        amount: int,
        market_index: int,
        limit_price: Optional[int] = None,
        discount_token: Optional[Pubkey] = None,
        referrer: Optional[Pubkey] = None,
    ) -> InvocationDescriptor:
        if limit_price is None:
            limit_price = NO_LIMIT_PRICE
        optional_accounts, remaining = manage_position_optional_accounts(discount_token, referrer)
        accounts = await self._manage_position_accounts(market_index)
        return self.interface.describe(
            "open_position",
            [_position_direction(direction), amount, market_index, limit_price, optional_accounts],
            accounts,
            remaining_accounts=remaining,
        )

    async def get_close_position_descriptor(
        self,
        market_index: int,
        discount_token: Optional[Pubkey] = None,
        referrer: Optional[Pubkey] = None,
    ) -> InvocationDescriptor:
        optional_accounts, remaining = manage_position_optional_accounts(discount_token, referrer)
        accounts = await self._manage_position_accounts(market_index)
        return self.interface.describe(
            "close_position",
            [market_index, optional_accounts],
            accounts,
            remaining_accounts=remaining,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def initialize(self) -> Signature:
        """Create the Config and collateral vault. Fails remotely if already done."""
        logger.info("DriftClient.initialize(program=%s)", self.program_id)
        return await self.transport.invoke(self.get_initialize_descriptor())

    async def initialize_user(self) -> Signature:
        logger.info("DriftClient.initialize_user(authority=%s)", self.get_authority_public_key())
        return await self.transport.invoke(self.get_initialize_user_descriptor())

    async def deposit_collateral(self, amount: int, collateral_account: Pubkey) -> Signature:
        logger.info("DriftClient.deposit_collateral(amount=%s, source=%s)", amount, collateral_account)
        descriptor = await self.get_deposit_collateral_descriptor(amount, collateral_account)
        return await self.transport.invoke(descriptor)

    async def withdraw_collateral(self, amount: int, collateral_account: Pubkey) -> Signature:
        logger.info("DriftClient.withdraw_collateral(amount=%s, destination=%s)", amount, collateral_account)
        descriptor = await self.get_withdraw_collateral_descriptor(amount, collateral_account)
        return await self.transport.invoke(descriptor)

    async def open_position(
        self,
        direction: PositionDirection,
        amount: int,
        market_index: int,
        limit_price: Optional[int] = None,
        discount_token: Optional[Pubkey] = None,
        referrer: Optional[Pubkey] = None,
    ) -> Signature:
        """
        Open (or add to) a position in ``market_index``.

        ``amount`` is the quote asset amount. ``limit_price`` of ``None`` is sent
        as 0, which the clearing house reads as "no limit".
        """
        logger.info(
            "DriftClient.open_position(direction=%s, amount=%s, market_index=%s, limit_price=%s)",
            direction,
            amount,
            market_index,
            limit_price,
        )
        descriptor = await self.get_open_position_descriptor(
            direction, amount, market_index, limit_price, discount_token, referrer
        )
        return await self.transport.invoke(descriptor)

    async def close_position(
        self,
        market_index: int,
        discount_token: Optional[Pubkey] = None,
        referrer: Optional[Pubkey] = None,
    ) -> Signature:
        logger.info("DriftClient.close_position(market_index=%s)", market_index)
        descriptor = await self.get_close_position_descriptor(market_index, discount_token, referrer)
        return await self.transport.invoke(descriptor)


__all__ = ["DriftClient"]
