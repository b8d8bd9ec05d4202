import asyncio

import pytest
from solders.pubkey import Pubkey

from conftest import FakeClearingHouse
from drift_client.core.drift_core.drift_client import DriftClient
from drift_client.perps import pdas
from drift_client.perps.constants import CLEARING_HOUSE_PROGRAM_ID, NO_LIMIT_PRICE, RENT_SYSVAR, TOKEN_PROGRAM
from drift_client.perps.errors import AccountNotFound, InvalidInvocation, NotSubscribed, RemoteInvocationRejected
from drift_client.perps.invocation import ProgramInterface
from drift_client.perps.models import ManagePositionOptionalAccounts, PositionDirection, UserPositionsAccount


def _boom(*_args, **_kwargs):
    raise AssertionError("address derived before subscription check")


def test_construction_requires_subscription(provider, ledger, monkeypatch):
    monkeypatch.setattr(pdas, "derive", _boom)
    with pytest.raises(NotSubscribed):
        DriftClient(provider, FakeClearingHouse(subscribed=False), transport=ledger)


def test_program_id_defaults_to_idl_address(client):
    assert str(client.program_id) == "EGovrRumVsvCzcvHSAYZxzsiUiMTTsMSRjuwUVSxYkXt"


def test_program_id_must_agree_with_interface(provider, clearing_house, ledger):
    interface = ProgramInterface()
    with pytest.raises(InvalidInvocation):
        DriftClient(provider, clearing_house, program_id=Pubkey.new_unique(), interface=interface, transport=ledger)
    client = DriftClient(
        provider, clearing_house, program_id=interface.program_id, interface=interface, transport=ledger
    )
    assert client.program_id == interface.program_id


def test_program_id_alone_builds_interface(provider, clearing_house, ledger):
    program_id = Pubkey.new_unique()
    client = DriftClient(provider, clearing_house, program_id=program_id, transport=ledger)
    assert client.program_id == program_id
    assert client.interface.program_id == program_id


def test_address_accessors_match_derivations(client):
    pid = client.program_id
    assert client.get_config_public_key() == pdas.get_config_public_key_and_nonce(pid)[0]
    assert client.get_collateral_vault_public_key() == pdas.get_collateral_vault_public_key_and_nonce(pid)[0]
    assert (
        client.get_collateral_vault_authority_public_key()
        == pdas.get_collateral_vault_authority_public_key_and_nonce(pid)[0]
    )
    authority = pdas.get_clearing_house_authority_public_key_and_nonce(pid, CLEARING_HOUSE_PROGRAM_ID)[0]
    assert client.get_authority_public_key() == authority
    assert (
        client.get_clearing_house_user_account_public_key()
        == pdas.get_user_account_public_key_and_nonce(CLEARING_HOUSE_PROGRAM_ID, authority)[0]
    )


# ---------------------------------------------------------------------------
# initialize
# ---------------------------------------------------------------------------


def test_initialize_descriptor(client, clearing_house, payer):
    d = client.get_initialize_descriptor()
    config_pk, config_nonce = pdas.get_config_public_key_and_nonce(client.program_id)
    vault_pk, vault_nonce = pdas.get_collateral_vault_public_key_and_nonce(client.program_id)
    assert d.args == (config_nonce, vault_nonce)
    assert list(d.accounts) == [
        "admin",
        "config",
        "collateral_mint",
        "collateral_vault",
        "authority",
        "clearing_house_state",
        "rent",
        "system_program",
        "token_program",
    ]
    assert d.account("admin") == payer.pubkey()
    assert d.accounts["admin"].is_signer and d.accounts["admin"].is_writable
    assert d.account("config") == config_pk
    assert d.account("collateral_vault") == vault_pk
    assert d.account("collateral_mint") == clearing_house.state.collateral_mint
    assert d.account("clearing_house_state") == clearing_house.get_state_public_key()
    assert d.account("rent") == RENT_SYSVAR
    assert d.account("token_program") == TOKEN_PROGRAM
    assert d.remaining_accounts == () and d.signers == ()


def test_initialize_then_get_config(client, payer):
    asyncio.run(client.initialize())
    config = asyncio.run(client.get_config())
    assert config.admin == payer.pubkey()
    assert config.collateral_vault == client.get_collateral_vault_public_key()
    assert config.authority == client.get_authority_public_key()


def test_get_config_before_initialize(client):
    with pytest.raises(AccountNotFound):
        asyncio.run(client.get_config())


def test_initialize_twice_fails_remotely(client):
    asyncio.run(client.initialize())
    with pytest.raises(RemoteInvocationRejected):
        asyncio.run(client.initialize())


# ---------------------------------------------------------------------------
# initialize_user
# ---------------------------------------------------------------------------


def test_initialize_user_descriptor_has_fresh_co_signer(client):
    a = client.get_initialize_user_descriptor()
    b = client.get_initialize_user_descriptor()
    positions_a = a.account("clearing_house_user_positions")
    assert [kp.pubkey() for kp in a.signers] == [positions_a]
    assert positions_a != b.account("clearing_house_user_positions")
    _, user_nonce = pdas.get_user_account_public_key_and_nonce(
        CLEARING_HOUSE_PROGRAM_ID, client.get_authority_public_key()
    )
    assert a.args == (user_nonce,)
    assert a.account("clearing_house_program") == CLEARING_HOUSE_PROGRAM_ID


def test_initialize_user_authority_is_program_authority(client):
    asyncio.run(client.initialize())
    asyncio.run(client.initialize_user())
    user = asyncio.run(client.get_user_account())
    assert user.authority == client.get_authority_public_key()
    assert user.collateral == 0


def test_get_user_account_before_init(client):
    with pytest.raises(AccountNotFound):
        asyncio.run(client.get_user_account())


# ---------------------------------------------------------------------------
# collateral
# ---------------------------------------------------------------------------


@pytest.fixture
def user_client(client):
    asyncio.run(client.initialize())
    asyncio.run(client.initialize_user())
    return client


@pytest.fixture
def source(ledger):
    return ledger.fund(Pubkey.new_unique(), 1_000_000_000)


def test_deposit_before_user_exists(client, ledger, source):
    with pytest.raises(AccountNotFound):
        asyncio.run(client.deposit_collateral(10, source))
    assert ledger.calls == []


def test_deposit_collateral(user_client, ledger, source, clearing_house):
    asyncio.run(user_client.deposit_collateral(10_000_000, source))
    user = asyncio.run(user_client.get_user_account())
    assert user.collateral == 10_000_000
    assert user.cumulative_deposits == 10_000_000
    assert ledger.balance(source) == 1_000_000_000 - 10_000_000
    assert ledger.balance(clearing_house.state.collateral_vault) == 10_000_000


def test_deposit_smallest_unit(user_client, ledger, source):
    asyncio.run(user_client.deposit_collateral(1, source))
    assert asyncio.run(user_client.get_user_account()).collateral == 1
    assert ledger.balance(source) == 1_000_000_000 - 1


def test_deposit_more_than_token_balance_is_rejected(user_client, ledger):
    poor = ledger.fund(Pubkey.new_unique(), 5)
    with pytest.raises(RemoteInvocationRejected):
        asyncio.run(user_client.deposit_collateral(6, poor))
    assert ledger.balance(poor) == 5
    assert asyncio.run(user_client.get_user_account()).collateral == 0


def test_deposit_descriptor_accounts(user_client, clearing_house):
    source = Pubkey.new_unique()
    d = asyncio.run(user_client.get_deposit_collateral_descriptor(5, source))
    user = asyncio.run(user_client.get_user_account())
    state = clearing_house.state
    assert d.args == (5,)
    assert d.account("admin_collateral_account") == source
    assert d.account("clearing_house_user_positions") == user.positions
    assert d.account("clearing_house_collateral_vault") == state.collateral_vault
    assert d.account("clearing_house_markets") == state.markets
    assert d.account("clearing_house_deposit_history") == state.deposit_history
    assert d.account("clearing_house_funding_payment_history") == state.funding_payment_history
    assert "clearing_house_insurance_vault" not in d.accounts


def test_withdraw_descriptor_adds_vault_authorities(user_client, clearing_house):
    d = asyncio.run(user_client.get_withdraw_collateral_descriptor(5, Pubkey.new_unique()))
    state = clearing_house.state
    assert d.account("clearing_house_collateral_vault_authority") == state.collateral_vault_authority
    assert d.account("clearing_house_insurance_vault") == state.insurance_vault
    assert d.account("clearing_house_insurance_vault_authority") == state.insurance_vault_authority


def test_withdraw_credits_destination_by_exact_amount(user_client, ledger, source, clearing_house):
    destination = Pubkey.new_unique()
    asyncio.run(user_client.deposit_collateral(1_000, source))

    asyncio.run(user_client.withdraw_collateral(400, destination))

    assert ledger.balance(destination) == 400
    assert ledger.balance(clearing_house.state.collateral_vault) == 600
    assert asyncio.run(user_client.get_user_account()).collateral == 600


def test_withdraw_more_than_collateral_is_rejected(user_client, ledger, source):
    destination = Pubkey.new_unique()
    asyncio.run(user_client.deposit_collateral(100, source))
    with pytest.raises(RemoteInvocationRejected):
        asyncio.run(user_client.withdraw_collateral(101, destination))
    assert asyncio.run(user_client.get_user_account()).collateral == 100
    assert ledger.balance(destination) == 0


# ---------------------------------------------------------------------------
# positions
# ---------------------------------------------------------------------------


def test_open_position_descriptor(user_client, clearing_house):
    d = asyncio.run(user_client.get_open_position_descriptor(PositionDirection.LONG, 1_000, 1))
    direction, amount, market_index, limit_price, optional = d.args
    assert direction is PositionDirection.LONG
    assert (amount, market_index) == (1_000, 1)
    assert limit_price == NO_LIMIT_PRICE
    assert optional == ManagePositionOptionalAccounts()
    assert d.account("oracle") == clearing_house.markets[1].oracle
    assert d.account("clearing_house_trade_history") == clearing_house.state.trade_history
    assert d.remaining_accounts == ()


def test_open_position_keeps_explicit_limit_price(user_client):
    d = asyncio.run(user_client.get_open_position_descriptor("Short", 1_000, 0, limit_price=42))
    assert d.args[0] is PositionDirection.SHORT
    assert d.args[3] == 42


@pytest.mark.parametrize("direction", ["long", "LONG", "Long"])
def test_open_position_direction_is_case_insensitive(user_client, direction):
    d = asyncio.run(user_client.get_open_position_descriptor(direction, 1_000, 0))
    assert d.args[0] is PositionDirection.LONG


def test_open_position_unknown_direction(user_client, ledger):
    with pytest.raises(InvalidInvocation):
        asyncio.run(user_client.open_position("sideways", 1_000, 0))
    assert [d.method for d in ledger.calls] == ["initialize", "initialize_user"]


OPTIONAL_ACCOUNT_CASES = [
    (None, None, ManagePositionOptionalAccounts(False, False)),
    (Pubkey.new_unique(), None, ManagePositionOptionalAccounts(True, False)),
    (None, Pubkey.new_unique(), ManagePositionOptionalAccounts(False, True)),
    (Pubkey.new_unique(), Pubkey.new_unique(), ManagePositionOptionalAccounts(True, True)),
]


def _assert_tail(d, discount_token, referrer, expected):
    assert d.optional_accounts == expected
    assert [m.pubkey for m in d.remaining_accounts] == [p for p in (discount_token, referrer) if p]
    assert len(d.remaining_accounts) == expected.set_count()
    for meta in d.remaining_accounts:
        assert not meta.is_signer
        # the discount token is only read, the referrer record is updated
        assert meta.is_writable is (referrer is not None and meta.pubkey == referrer)


@pytest.mark.parametrize("discount_token, referrer, expected", OPTIONAL_ACCOUNT_CASES)
def test_open_position_optional_accounts(user_client, discount_token, referrer, expected):
    d = asyncio.run(
        user_client.get_open_position_descriptor(PositionDirection.LONG, 1_000, 0, None, discount_token, referrer)
    )
    _assert_tail(d, discount_token, referrer, expected)
    assert d.args[4] == expected


@pytest.mark.parametrize("discount_token, referrer, expected", OPTIONAL_ACCOUNT_CASES)
def test_close_position_optional_accounts(user_client, discount_token, referrer, expected):
    d = asyncio.run(user_client.get_close_position_descriptor(0, discount_token, referrer))
    _assert_tail(d, discount_token, referrer, expected)


def test_unknown_market_index(user_client):
    with pytest.raises(IndexError):
        asyncio.run(user_client.open_position(PositionDirection.LONG, 1, 9))


def test_full_lifecycle(user_client, ledger, source):
    asyncio.run(user_client.deposit_collateral(10_000, source))

    asyncio.run(user_client.open_position(PositionDirection.LONG, 1_000, 0))
    slot0 = asyncio.run(user_client.get_primary_position())
    assert slot0.is_open
    assert slot0.quote_asset_amount == 1_000
    assert slot0.base_asset_amount > 0

    asyncio.run(user_client.close_position(0))
    slot0 = asyncio.run(user_client.get_primary_position())
    assert not slot0.is_open
    assert slot0.quote_asset_amount == 0

    asyncio.run(user_client.withdraw_collateral(10_000, source))
    assert asyncio.run(user_client.get_user_account()).collateral == 0
    assert ledger.balance(source) == 1_000_000_000

    assert [d.method for d in ledger.calls] == [
        "initialize",
        "initialize_user",
        "deposit_collateral",
        "open_position",
        "close_position",
        "withdraw_collateral",
    ]


def test_primary_position_of_empty_table(user_client, clearing_house):
    user = asyncio.run(user_client.get_user_account())
    clearing_house.positions[user.positions] = UserPositionsAccount(user=user.authority, positions=[])
    with pytest.raises(AccountNotFound) as exc_info:
        asyncio.run(user_client.get_primary_position())
    assert exc_info.value.address == user.positions


def test_short_position_has_negative_base(user_client, source):
    asyncio.run(user_client.deposit_collateral(10_000, source))
    asyncio.run(user_client.open_position(PositionDirection.SHORT, 500, 1))
    table = asyncio.run(user_client.get_user_positions_account())
    assert table.positions[0].market_index == 1
    assert table.positions[0].base_asset_amount < 0


def test_reads_are_not_cached(user_client, source):
    before = asyncio.run(user_client.get_user_account())
    asyncio.run(user_client.deposit_collateral(7, source))
    after = asyncio.run(user_client.get_user_account())
    assert (before.collateral, after.collateral) == (0, 7)
