from __future__ import annotations

import dataclasses
from types import SimpleNamespace
from typing import Dict, List

import pytest
from anchorpy import Wallet
from solana.rpc.types import TxOpts
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from drift_client.core.drift_core.drift_client import DriftClient
from drift_client.perps.constants import CLEARING_HOUSE_PROGRAM_ID
from drift_client.perps.errors import AccountNotFound, NotSubscribed, RemoteInvocationRejected
from drift_client.perps.idl import _camel_to_snake, _find_ix_json
from drift_client.perps.invocation import InvocationDescriptor, ProgramInterface
from drift_client.perps.models import (
    CONFIG_DISCRIMINATOR,
    ClearingHouseState,
    Market,
    PositionDirection,
    UserAccount,
    UserPosition,
    UserPositionsAccount,
)
from drift_client.perps.pdas import (
    get_clearing_house_state_public_key_and_nonce,
    get_user_account_public_key_and_nonce,
)

POSITION_SLOTS = 5


def encode_config(
    admin: Pubkey,
    collateral_vault: Pubkey,
    authority: Pubkey,
    authority_nonce: int,
    clearing_house_user: Pubkey = Pubkey.default(),
    clearing_house_user_positions: Pubkey = Pubkey.default(),
) -> bytes:
    return (
        CONFIG_DISCRIMINATOR
        + bytes(admin)
        + bytes(collateral_vault)
        + bytes(authority)
        + bytes([authority_nonce])
        + bytes(clearing_house_user)
        + bytes(clearing_house_user_positions)
    )


class FakeClearingHouse:
    """In-memory clearing house: a fixed state snapshot plus user records."""

    def __init__(self, *, subscribed: bool = True, markets: int = 2) -> None:
        self.program_id = CLEARING_HOUSE_PROGRAM_ID
        self.is_subscribed = subscribed
        self.state = ClearingHouseState(
            admin=Pubkey.new_unique(),
            collateral_mint=Pubkey.new_unique(),
            collateral_vault=Pubkey.new_unique(),
            collateral_vault_authority=Pubkey.new_unique(),
            insurance_vault=Pubkey.new_unique(),
            insurance_vault_authority=Pubkey.new_unique(),
            markets=Pubkey.new_unique(),
            deposit_history=Pubkey.new_unique(),
            trade_history=Pubkey.new_unique(),
            funding_payment_history=Pubkey.new_unique(),
            funding_rate_history=Pubkey.new_unique(),
        )
        self.markets = [Market(market_index=i, initialized=True, oracle=Pubkey.new_unique()) for i in range(markets)]
        self.users: Dict[Pubkey, UserAccount] = {}
        self.positions: Dict[Pubkey, UserPositionsAccount] = {}

    def get_state_public_key(self) -> Pubkey:
        return get_clearing_house_state_public_key_and_nonce(self.program_id)[0]

    def get_state_account(self) -> ClearingHouseState:
        if not self.is_subscribed:
            raise NotSubscribed("not subscribed")
        return self.state

    def get_market(self, market_index: int) -> Market:
        return self.markets[market_index]

    def get_user_account_public_key(self, authority: Pubkey) -> Pubkey:
        return get_user_account_public_key_and_nonce(self.program_id, authority)[0]

    async def fetch_user_account(self, address: Pubkey) -> UserAccount:
        if address not in self.users:
            raise AccountNotFound("User", address)
        return self.users[address]

    async def fetch_user_positions_account(self, address: Pubkey) -> UserPositionsAccount:
        if address not in self.positions:
            raise AccountNotFound("UserPositions", address)
        return self.positions[address]


class FakeConnection:
    def __init__(self) -> None:
        self.accounts: Dict[Pubkey, bytes] = {}

    async def get_account_info(self, pubkey: Pubkey):
        data = self.accounts.get(pubkey)
        return SimpleNamespace(value=None if data is None else SimpleNamespace(data=data))


class FakeLedger:
    """
    Transport that applies descriptors to the fake clearing house and
    connection the way the deployed programs would.
    """

    def __init__(self, clearing_house: FakeClearingHouse, connection: FakeConnection) -> None:
        self.clearing_house = clearing_house
        self.connection = connection
        self.interface = ProgramInterface()
        self.calls: List[InvocationDescriptor] = []
        self.instructions = []
        self.token_balances: Dict[Pubkey, int] = {}

    async def invoke(self, descriptor: InvocationDescriptor) -> Signature:
        # encoding must succeed for every descriptor that reaches the ledger
        self.instructions.append(self.interface.to_instruction(descriptor))
        self.calls.append(descriptor)
        getattr(self, f"_{descriptor.method}")(descriptor)
        return Signature.new_unique()

    def _reject(self, descriptor: InvocationDescriptor, reason: str) -> None:
        raise RemoteInvocationRejected(descriptor.method, reason)

    def _initialize(self, d: InvocationDescriptor) -> None:
        config_pk = d.account("config")
        if config_pk in self.connection.accounts:
            self._reject(d, f"account {config_pk} already in use")
        self.connection.accounts[config_pk] = encode_config(
            d.account("admin"), d.account("collateral_vault"), d.account("authority"), 254
        )

    def _initialize_user(self, d: InvocationDescriptor) -> None:
        user_pk = d.account("clearing_house_user")
        if user_pk in self.clearing_house.users:
            self._reject(d, f"account {user_pk} already in use")
        positions_pk = d.account("clearing_house_user_positions")
        self.clearing_house.users[user_pk] = UserAccount(
            authority=d.account("authority"), collateral=0, positions=positions_pk
        )
        self.clearing_house.positions[positions_pk] = UserPositionsAccount(
            user=user_pk,
            positions=[UserPosition(market_index=0, base_asset_amount=0, quote_asset_amount=0)] * POSITION_SLOTS,
        )

    def _user(self, d: InvocationDescriptor) -> UserAccount:
        return self.clearing_house.users[d.account("clearing_house_user")]

    def _store_user(self, d: InvocationDescriptor, user: UserAccount) -> None:
        self.clearing_house.users[d.account("clearing_house_user")] = user

    def fund(self, token_account: Pubkey, amount: int) -> Pubkey:
        """Mint ``amount`` collateral into a token account outside the program."""
        self.token_balances[token_account] = self.token_balances.get(token_account, 0) + amount
        return token_account

    def balance(self, token_account: Pubkey) -> int:
        return self.token_balances.get(token_account, 0)

    def _transfer(self, d: InvocationDescriptor, source: Pubkey, destination: Pubkey, amount: int) -> None:
        if self.balance(source) < amount:
            self._reject(d, "insufficient funds")
        self.token_balances[source] = self.balance(source) - amount
        self.token_balances[destination] = self.balance(destination) + amount

    def _deposit_collateral(self, d: InvocationDescriptor) -> None:
        (amount,) = d.args
        user = self._user(d)
        self._transfer(d, d.account("admin_collateral_account"), d.account("clearing_house_collateral_vault"), amount)
        self._store_user(
            d,
            dataclasses.replace(
                user,
                collateral=user.collateral + amount,
                cumulative_deposits=user.cumulative_deposits + amount,
            ),
        )

    def _withdraw_collateral(self, d: InvocationDescriptor) -> None:
        (amount,) = d.args
        user = self._user(d)
        if amount > user.collateral:
            self._reject(d, "InsufficientCollateral")
        self._transfer(d, d.account("clearing_house_collateral_vault"), d.account("admin_collateral_account"), amount)
        self._store_user(d, dataclasses.replace(user, collateral=user.collateral - amount))

    def _set_slot0(self, d: InvocationDescriptor, position: UserPosition) -> None:
        positions_pk = d.account("clearing_house_user_positions")
        table = self.clearing_house.positions[positions_pk]
        self.clearing_house.positions[positions_pk] = dataclasses.replace(
            table, positions=[position] + list(table.positions[1:])
        )

    def _open_position(self, d: InvocationDescriptor) -> None:
        direction, amount, market_index, _limit_price, _optional = d.args
        sign = 1 if direction == PositionDirection.LONG else -1
        self._set_slot0(
            d, UserPosition(market_index=market_index, base_asset_amount=sign * amount, quote_asset_amount=amount)
        )

    def _close_position(self, d: InvocationDescriptor) -> None:
        market_index, _optional = d.args
        self._set_slot0(d, UserPosition(market_index=market_index, base_asset_amount=0, quote_asset_amount=0))


@pytest.fixture
def payer() -> Keypair:
    return Keypair()


@pytest.fixture
def clearing_house() -> FakeClearingHouse:
    return FakeClearingHouse()


@pytest.fixture
def connection() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def provider(payer, connection):
    return SimpleNamespace(connection=connection, wallet=Wallet(payer), opts=TxOpts())


@pytest.fixture
def ledger(clearing_house, connection) -> FakeLedger:
    return FakeLedger(clearing_house, connection)


@pytest.fixture
def client(provider, clearing_house, ledger) -> DriftClient:
    return DriftClient(provider, clearing_house, transport=ledger)


def accounts_for(interface: ProgramInterface, method: str, **overrides: Pubkey) -> Dict[str, Pubkey]:
    """Fresh unique pubkeys for every account role of ``method``."""
    ix = _find_ix_json(interface.idl, method)
    roles = {_camel_to_snake(a["name"]): Pubkey.new_unique() for a in ix["accounts"]}
    roles.update(overrides)
    return roles
