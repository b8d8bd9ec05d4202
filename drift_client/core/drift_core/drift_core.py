from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from anchorpy import Provider, Wallet
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.types import TxOpts

from drift_client.config.rpc import is_local, redacted
from drift_client.perps.clearing_house import AnchorClearingHouse
from drift_client.perps.errors import DriftClientError
from drift_client.perps.invocation import ProgramInterface
from drift_client.perps.pdas import (
    get_clearing_house_authority_public_key_and_nonce,
    get_clearing_house_state_public_key_and_nonce,
    get_collateral_vault_authority_public_key_and_nonce,
    get_collateral_vault_public_key_and_nonce,
    get_config_public_key_and_nonce,
    get_user_account_public_key_and_nonce,
)
from drift_client.perps.transport import RpcTransport
from drift_client.services.signer_loader import diagnose_signer, load_signer

from .drift_client import DriftClient
from .drift_config import DriftClientConfig

logger = logging.getLogger(__name__)


class DriftCore:
    """
    Composition root for the drift-client console.

    Owns the RPC connection and wires the wallet, the subscribed clearing
    house reader and the :class:`DriftClient` together from a
    :class:`DriftClientConfig`.
    """

    def __init__(self, config: Optional[DriftClientConfig] = None) -> None:
        self._config = config or DriftClientConfig.from_env()
        self._connection: Optional[AsyncClient] = None
        self._clearing_house: Optional[AnchorClearingHouse] = None
        self._client: Optional[DriftClient] = None

    @property
    def config(self) -> DriftClientConfig:
        return self._config

    @property
    def client(self) -> DriftClient:
        if self._client is None:
            raise DriftClientError("DriftCore.connect() has not been called")
        return self._client

    async def __aenter__(self) -> "DriftCore":
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    def _new_connection(self) -> AsyncClient:
        return AsyncClient(self._config.rpc_url, commitment=Commitment(self._config.commitment))

    async def connect(self) -> DriftClient:
        """Open the connection, subscribe the clearing house and build the client."""
        if self._client is not None:
            return self._client
        cfg = self._config
        logger.info("DriftCore.connect(rpc=%s, program=%s)", redacted(cfg.rpc_url), cfg.program_id)

        payer = load_signer(cfg.signer_file)
        self._connection = self._new_connection()
        opts = TxOpts(
            skip_confirmation=False,
            skip_preflight=cfg.skip_preflight,
            preflight_commitment=Commitment(cfg.commitment),
        )
        provider = Provider(self._connection, Wallet(payer), opts)

        try:
            clearing_house = AnchorClearingHouse.from_idl_path(
                cfg.clearing_house_idl_file, cfg.clearing_house_program_id, provider
            )
            await clearing_house.subscribe()
        except Exception:
            await self.close()
            raise

        interface = ProgramInterface(cfg.program_id)
        transport = RpcTransport(
            provider,
            interface,
            compute_unit_limit=cfg.compute_unit_limit,
            compute_unit_price=cfg.compute_unit_price,
        )
        self._clearing_house = clearing_house
        self._client = DriftClient(provider, clearing_house, transport=transport, interface=interface)
        return self._client

    async def close(self) -> None:
        if self._clearing_house is not None:
            await self._clearing_house.unsubscribe()
        if self._connection is not None:
            await self._connection.close()
        self._clearing_house = None
        self._connection = None
        self._client = None

    def derived_addresses(self) -> Dict[str, Any]:
        """Every address this client derives, computed offline from the config."""
        pid = self._config.program_id
        ch_pid = self._config.clearing_house_program_id
        config_pk, config_nonce = get_config_public_key_and_nonce(pid)
        vault_pk, vault_nonce = get_collateral_vault_public_key_and_nonce(pid)
        vault_auth_pk, vault_auth_nonce = get_collateral_vault_authority_public_key_and_nonce(pid)
        authority_pk, authority_nonce = get_clearing_house_authority_public_key_and_nonce(pid, ch_pid)
        state_pk, _ = get_clearing_house_state_public_key_and_nonce(ch_pid)
        user_pk, user_nonce = get_user_account_public_key_and_nonce(ch_pid, authority_pk)
        return {
            "program_id": str(pid),
            "clearing_house_program_id": str(ch_pid),
            "config": f"{config_pk} (nonce {config_nonce})",
            "collateral_vault": f"{vault_pk} (nonce {vault_nonce})",
            "collateral_vault_authority": f"{vault_auth_pk} (nonce {vault_auth_nonce})",
            "authority": f"{authority_pk} (nonce {authority_nonce})",
            "clearing_house_state": str(state_pk),
            "clearing_house_user": f"{user_pk} (nonce {user_nonce})",
        }

    async def health_check(self) -> Dict[str, Any]:
        """
        Lightweight health probe.

        Reports the (redacted) RPC URL, whether the node answers, the signer
        diagnostics and whether the clearing house snapshot is loaded.
        """
        logger.info("DriftCore.health_check() called.")
        cfg = self._config
        connection = self._connection or self._new_connection()
        try:
            rpc_ok = await connection.is_connected()
        finally:
            if connection is not self._connection:
                await connection.close()

        signer = diagnose_signer(cfg.signer_file)
        return {
            "rpc_url": redacted(cfg.rpc_url),
            "localnet": is_local(cfg.rpc_url),
            "rpc_ok": rpc_ok,
            "commitment": cfg.commitment,
            "program_id": str(cfg.program_id),
            "clearing_house_program_id": str(cfg.clearing_house_program_id),
            "signer_ok": "pubkey" in signer,
            "signer": signer.get("pubkey") or signer.get("error", ""),
            "subscribed": bool(self._clearing_house and self._clearing_house.is_subscribed),
        }


__all__ = ["DriftCore"]
