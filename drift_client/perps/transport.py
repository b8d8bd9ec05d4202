from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol

from anchorpy import Provider
from solana.exceptions import SolanaRpcException
from solana.rpc.core import (
    RPCException,
    TransactionExpiredBlockheightExceededError,
    UnconfirmedTxError,
)
from solana.rpc.types import TxOpts
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import Instruction
from solders.message import MessageV0
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from .errors import ProgramError, RemoteInvocationRejected
from .invocation import InvocationDescriptor, ProgramInterface

logger = logging.getLogger(__name__)

_CUSTOM_ERR_RE = re.compile(r"custom program error: 0x([0-9a-fA-F]+)")
_ERR_NUMBER_RE = re.compile(r"Error Number: (\d+)")
# transaction status errors: InstructionErrorCustom(300) or {"Custom": 300}
_STATUS_CUSTOM_RE = re.compile(r'Custom(?:\(|":\s*)(\d+)')


class Transport(Protocol):
    """Submits an assembled invocation and returns its transaction signature."""

    async def invoke(self, descriptor: InvocationDescriptor) -> Signature: ...


@dataclass
class SimulationResult:
    err: Any
    logs: List[str] = field(default_factory=list)
    units_consumed: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.err is None


def _rejection_logs(reason: object) -> List[str]:
    """Pull program logs out of a preflight failure, whatever shape the node used."""
    args = reason.args if isinstance(reason, BaseException) else ()
    payload = args[0] if args else None
    data = getattr(payload, "data", None)
    logs = getattr(data, "logs", None)
    if logs is None and isinstance(payload, dict):
        logs = (payload.get("data") or {}).get("logs")
    return [str(x) for x in (logs or [])]


def _parse_error_code(text: str) -> Optional[int]:
    m = _CUSTOM_ERR_RE.search(text)
    if m:
        return int(m.group(1), 16)
    m = _ERR_NUMBER_RE.search(text)
    if m:
        return int(m.group(1))
    m = _STATUS_CUSTOM_RE.search(text)
    if m:
        return int(m.group(1))
    return None


class RpcTransport:
    """
    Signs, sends and confirms descriptors through a solana-py connection.

    The wallet payer signs every transaction; keypairs carried by the
    descriptor co-sign. One send per call, no retries. A send only counts as
    applied once the signature reaches the configured commitment without a
    transaction error.
    """

    def __init__(
        self,
        provider: Provider,
        interface: ProgramInterface,
        *,
        compute_unit_limit: Optional[int] = None,
        compute_unit_price: Optional[int] = None,
        opts: Optional[TxOpts] = None,
    ) -> None:
        self._provider = provider
        self._interface = interface
        self._cu_limit = compute_unit_limit
        self._cu_price = compute_unit_price
        self._opts = opts or provider.opts

    @property
    def interface(self) -> ProgramInterface:
        return self._interface

    def compute_budget_ixs(self) -> List[Instruction]:
        ixs: List[Instruction] = []
        if self._cu_limit:
            ixs.append(set_compute_unit_limit(int(self._cu_limit)))
        if self._cu_price:
            ixs.append(set_compute_unit_price(int(self._cu_price)))
        return ixs

    def _compile(self, descriptor: InvocationDescriptor, blockhash) -> VersionedTransaction:
        payer = self._provider.wallet.payer
        ixs = self.compute_budget_ixs() + [self._interface.to_instruction(descriptor)]
        msg = MessageV0.try_compile(
            payer=payer.pubkey(),
            instructions=ixs,
            address_lookup_table_accounts=[],
            recent_blockhash=blockhash,
        )
        return VersionedTransaction(msg, [payer, *descriptor.signers])

    async def build_transaction(self, descriptor: InvocationDescriptor) -> VersionedTransaction:
        resp = await self._provider.connection.get_latest_blockhash()
        return self._compile(descriptor, resp.value.blockhash)

    async def invoke(self, descriptor: InvocationDescriptor) -> Signature:
        conn = self._provider.connection
        latest = (await conn.get_latest_blockhash()).value
        tx = self._compile(descriptor, latest.blockhash)
        try:
            # confirmation is awaited below against the blockhash expiry
            resp = await conn.send_raw_transaction(bytes(tx), opts=self._opts._replace(skip_confirmation=True))
            sig = resp.value
            logger.info("%s submitted; signature=%s", descriptor.method, sig)
            conf = await conn.confirm_transaction(
                sig,
                commitment=self._opts.preflight_commitment,
                last_valid_block_height=latest.last_valid_block_height,
            )
        except (
            RPCException,
            SolanaRpcException,
            UnconfirmedTxError,
            TransactionExpiredBlockheightExceededError,
        ) as exc:
            raise self._rejected(descriptor.method, exc) from exc

        status = conf.value[0] if conf.value else None
        err = getattr(status, "err", None)
        if err is not None:
            raise self._rejected(descriptor.method, err)
        logger.info("%s confirmed; signature=%s", descriptor.method, sig)
        return sig

    async def simulate(self, descriptor: InvocationDescriptor) -> SimulationResult:
        tx = await self.build_transaction(descriptor)
        resp = await self._provider.connection.simulate_transaction(tx, sig_verify=False)
        val = resp.value
        result = SimulationResult(
            err=getattr(val, "err", None),
            logs=list(getattr(val, "logs", None) or []),
            units_consumed=getattr(val, "units_consumed", None),
        )
        if not result.ok:
            logger.warning("%s simulation failed: %s", descriptor.method, result.err)
        return result

    def _rejected(self, method: str, reason: object) -> RemoteInvocationRejected:
        logs = _rejection_logs(reason)
        code = _parse_error_code("\n".join(logs + [str(reason)]))
        program_error: Optional[ProgramError] = (
            self._interface.program_error(code) if code is not None else None
        )
        logger.error("%s rejected by the ledger: %s", method, program_error or reason)
        for line in logs:
            logger.debug("[%s] %s", method, line)
        return RemoteInvocationRejected(method, reason, logs=logs, program_error=program_error)


__all__ = ["Transport", "RpcTransport", "SimulationResult"]
