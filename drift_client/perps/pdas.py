from __future__ import annotations
from functools import lru_cache
from typing import Iterable, Optional, Sequence, Tuple, Union

from solders.pubkey import Pubkey
# Use absolute imports to avoid Windows/packaging edge cases
from drift_client.perps.constants import (
    CLEARING_HOUSE_STATE_SEED,
    CLEARING_HOUSE_USER_SEED,
    COLLATERAL_VAULT_SEED,
    CONFIG_SEED,
)
from drift_client.perps.errors import DerivationExhausted, InvalidSeed

__all__ = [
    "Seedish",
    "SeedPath",
    "MAX_SEEDS",
    "MAX_SEED_LEN",
    "seed_path",
    "derive",
    "find_program_address",
    "CONFIG_SEED_PATH",
    "COLLATERAL_VAULT_SEED_PATH",
    "collateral_vault_authority_seed_path",
    "clearing_house_authority_seed_path",
    "get_config_public_key_and_nonce",
    "get_collateral_vault_public_key_and_nonce",
    "get_collateral_vault_authority_public_key_and_nonce",
    "get_clearing_house_authority_public_key_and_nonce",
    "get_clearing_house_state_public_key_and_nonce",
    "get_user_account_public_key_and_nonce",
]

Seedish = Union[str, bytes, bytearray, Pubkey]
SeedPath = Tuple[bytes, ...]

# runtime limits enforced by create_program_address
MAX_SEEDS = 16
MAX_SEED_LEN = 32

# ---------------------------------------------------------------------------
# Core primitive
# ---------------------------------------------------------------------------

def _seed_bytes(x: Seedish) -> bytes:
    """Labels are UTF-8 encoded, pubkeys contribute their raw 32 bytes."""
    if isinstance(x, Pubkey):
        return bytes(x)
    if isinstance(x, (bytes, bytearray)):
        return bytes(x)
    if isinstance(x, str):
        return x.encode("utf-8")
    raise TypeError(f"unsupported seed type: {type(x)}")


def seed_path(*components: Seedish) -> SeedPath:
    """Build a seed path from mixed static labels and prior-derived addresses."""
    path = tuple(_seed_bytes(c) for c in components)
    # one slot is reserved for the bump nonce
    if len(path) >= MAX_SEEDS:
        raise InvalidSeed(f"too many seeds ({len(path)} >= {MAX_SEEDS})")
    for s in path:
        if len(s) > MAX_SEED_LEN:
            raise InvalidSeed(f"seed too long ({len(s)}B > {MAX_SEED_LEN}B)")
    return path


def _create_program_address(seeds: Sequence[bytes], program_id: Pubkey) -> Optional[Pubkey]:
    """Runtime create_program_address; None when the candidate lands on the curve."""
    try:
        return Pubkey.create_program_address(list(seeds), program_id)
    except ValueError:
        # solders raises PubkeyError (a ValueError) for on-curve candidates
        return None


@lru_cache(maxsize=256)
def _derive_cached(program_id: Pubkey, path: SeedPath) -> Tuple[Pubkey, int]:
    for nonce in range(255, 0, -1):
        pda = _create_program_address(path + (bytes([nonce]),), program_id)
        if pda is not None:
            return pda, nonce
    raise DerivationExhausted(
        f"no viable bump nonce for program {program_id} and seeds {[s.hex() for s in path]}"
    )


def derive(program_id: Pubkey, seeds: Iterable[Seedish]) -> Tuple[Pubkey, int]:
    """
    Return ``(address, nonce)`` for ``seeds`` under ``program_id``.

    Same search as the runtime's find_program_address (bump 255 down to 1), but
    an exhausted search raises :class:`DerivationExhausted` instead of panicking.
    Results are memoized per ``(program_id, seed path)``.
    """
    return _derive_cached(program_id, seed_path(*seeds))


def find_program_address(seeds: Iterable[Seedish], program_id: Pubkey) -> Pubkey:
    pda, _ = derive(program_id, seeds)
    return pda

# ---------------------------------------------------------------------------
# Named seed paths
# ---------------------------------------------------------------------------

CONFIG_SEED_PATH: SeedPath = seed_path(CONFIG_SEED)
COLLATERAL_VAULT_SEED_PATH: SeedPath = seed_path(COLLATERAL_VAULT_SEED)


def collateral_vault_authority_seed_path(collateral_vault: Pubkey) -> SeedPath:
    return seed_path(collateral_vault)


def clearing_house_authority_seed_path(clearing_house_program_id: Pubkey) -> SeedPath:
    return seed_path(clearing_house_program_id)

# ---------------------------------------------------------------------------
# drift_client program addresses
# ---------------------------------------------------------------------------

def get_config_public_key_and_nonce(program_id: Pubkey) -> Tuple[Pubkey, int]:
    """Config PDA: seeds = ["drift_client"]."""
    return derive(program_id, CONFIG_SEED_PATH)


def get_collateral_vault_public_key_and_nonce(program_id: Pubkey) -> Tuple[Pubkey, int]:
    """Collateral vault PDA: seeds = ["collateral_vault"]."""
    return derive(program_id, COLLATERAL_VAULT_SEED_PATH)


def get_collateral_vault_authority_public_key_and_nonce(program_id: Pubkey) -> Tuple[Pubkey, int]:
    """Collateral vault authority PDA: seeds = [collateral_vault]."""
    collateral_vault, _ = get_collateral_vault_public_key_and_nonce(program_id)
    return derive(program_id, collateral_vault_authority_seed_path(collateral_vault))


def get_clearing_house_authority_public_key_and_nonce(
    program_id: Pubkey, clearing_house_program_id: Pubkey
) -> Tuple[Pubkey, int]:
    """
    Authority the drift_client program signs with when calling into the
    clearing house: seeds = [clearing_house_program_id] under ``program_id``.
    """
    return derive(program_id, clearing_house_authority_seed_path(clearing_house_program_id))

# ---------------------------------------------------------------------------
# clearing house addresses (external protocol conventions)
# ---------------------------------------------------------------------------

def get_clearing_house_state_public_key_and_nonce(clearing_house_program_id: Pubkey) -> Tuple[Pubkey, int]:
    return derive(clearing_house_program_id, [CLEARING_HOUSE_STATE_SEED])


def get_user_account_public_key_and_nonce(
    clearing_house_program_id: Pubkey, authority: Pubkey
) -> Tuple[Pubkey, int]:
    """Clearing house user PDA: seeds = ["user", authority]."""
    return derive(clearing_house_program_id, [CLEARING_HOUSE_USER_SEED, authority])
