from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from solders.pubkey import Pubkey

from drift_client.config.rpc import LOCAL_RPC_URL
from drift_client.perps.constants import CLEARING_HOUSE_PROGRAM_ID, DRIFT_CLIENT_PROGRAM_ID

DEFAULT_SIGNER_PATH = "~/.config/solana/id.json"
DEFAULT_CLEARING_HOUSE_IDL_PATH = "idl/clearing_house.json"

_TRUTHY = {"1", "true", "yes", "on"}


def _env(*names: str) -> Optional[str]:
    """First non-empty value among ``names``."""
    for name in names:
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    return None


def _env_int(name: str) -> Optional[int]:
    value = _env(name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {value!r}") from e


def _env_pubkey(name: str, default: Pubkey) -> Pubkey:
    value = _env(name)
    if value is None:
        return default
    try:
        return Pubkey.from_string(value)
    except ValueError as e:
        raise ValueError(f"{name} is not a valid base58 public key: {value!r}") from e


@dataclass
class DriftClientConfig:
    """
    Connection settings for the drift-client console.

    Values come from the process environment, after a ``.env`` file in the
    working directory (if any) has been loaded on top of it. Variables already
    set in the environment win over ``.env`` entries.
    """

    rpc_url: str = LOCAL_RPC_URL
    commitment: str = "confirmed"
    program_id: Pubkey = DRIFT_CLIENT_PROGRAM_ID
    clearing_house_program_id: Pubkey = CLEARING_HOUSE_PROGRAM_ID
    clearing_house_idl_path: str = DEFAULT_CLEARING_HOUSE_IDL_PATH
    signer_path: str = DEFAULT_SIGNER_PATH
    skip_preflight: bool = False
    compute_unit_limit: Optional[int] = None
    compute_unit_price: Optional[int] = None

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "DriftClientConfig":
        load_dotenv(dotenv_path, override=False)
        return cls(
            rpc_url=_env("DRIFT_CLIENT_RPC_URL", "RPC_URL") or LOCAL_RPC_URL,
            commitment=_env("DRIFT_CLIENT_COMMITMENT") or "confirmed",
            program_id=_env_pubkey("DRIFT_CLIENT_PROGRAM_ID", DRIFT_CLIENT_PROGRAM_ID),
            clearing_house_program_id=_env_pubkey("CLEARING_HOUSE_PROGRAM_ID", CLEARING_HOUSE_PROGRAM_ID),
            clearing_house_idl_path=_env("CLEARING_HOUSE_IDL_PATH") or DEFAULT_CLEARING_HOUSE_IDL_PATH,
            signer_path=_env("DRIFT_CLIENT_SIGNER_PATH", "SIGNER_PATH") or DEFAULT_SIGNER_PATH,
            skip_preflight=(_env("DRIFT_CLIENT_SKIP_PREFLIGHT") or "").lower() in _TRUTHY,
            compute_unit_limit=_env_int("DRIFT_CLIENT_CU_LIMIT"),
            compute_unit_price=_env_int("DRIFT_CLIENT_CU_PRICE"),
        )

    @property
    def signer_file(self) -> Path:
        return Path(self.signer_path).expanduser()

    @property
    def clearing_house_idl_file(self) -> Path:
        return Path(self.clearing_house_idl_path).expanduser()


def get_drift_client_config() -> DriftClientConfig:
    """
    Convenience helper for callers that just want a config instance.
    """
    return DriftClientConfig.from_env()


__all__ = ["DriftClientConfig", "get_drift_client_config"]
