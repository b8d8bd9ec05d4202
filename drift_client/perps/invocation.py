"""
Invocation descriptors for the drift_client program.

An :class:`InvocationDescriptor` is the fully-specified unit of work handed to
a transport: method, positional args, the named accounts in program order with
their writable/signer flags, the optional-account tail and any extra signers.
:class:`ProgramInterface` builds descriptors from the program IDL and turns
them into ``solders`` instructions.
"""
from __future__ import annotations

import dataclasses
import hashlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from borsh_construct import I64, I128, U8, U16, U32, U64, U128, Bool
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .errors import InvalidInvocation, ProgramError
from .idl import (
    _camel_to_snake,
    _enum_json_variant_index,
    _error_table,
    _find_ix_json,
    _find_type_json,
    load_drift_client_idl,
    program_id_from_idl,
)
from .models import ManagePositionOptionalAccounts, _field

logger = logging.getLogger(__name__)

_INTS = {
    "u8": (U8, 8, False),
    "u16": (U16, 16, False),
    "u32": (U32, 32, False),
    "u64": (U64, 64, False),
    "u128": (U128, 128, False),
    "i64": (I64, 64, True),
    "i128": (I128, 128, True),
}


def _anchor_sighash(ix_name_snake: str) -> bytes:
    return hashlib.sha256(f"global:{ix_name_snake}".encode()).digest()[:8]


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountSpec:
    pubkey: Pubkey
    is_writable: bool = False
    is_signer: bool = False

    def to_meta(self) -> AccountMeta:
        return AccountMeta(pubkey=self.pubkey, is_signer=self.is_signer, is_writable=self.is_writable)


_OPTIONAL_SLOTS = tuple(f.name for f in dataclasses.fields(ManagePositionOptionalAccounts))


class OptionalAccountsBuilder:
    """
    Accumulates the toggle record and the trailing account list together.

    Each optional slot gets exactly one :meth:`add` call, in the order the
    toggle record declares its fields; passing ``None`` leaves the flag unset
    and appends nothing.
    """

    def __init__(self) -> None:
        self._flags: Dict[str, bool] = {}
        self._tail: List[AccountMeta] = []
        self._cursor = 0

    def add(self, name: str, pubkey: Optional[Pubkey], *, is_writable: bool = False) -> "OptionalAccountsBuilder":
        if name not in _OPTIONAL_SLOTS:
            raise InvalidInvocation(f"unknown optional account slot {name!r}; expected one of {_OPTIONAL_SLOTS}")
        idx = _OPTIONAL_SLOTS.index(name)
        if idx < self._cursor:
            raise InvalidInvocation(f"optional account {name!r} added twice or out of order")
        self._cursor = idx + 1
        if pubkey is None:
            return self
        self._flags[name] = True
        self._tail.append(AccountMeta(pubkey=pubkey, is_signer=False, is_writable=is_writable))
        return self

    def build(self) -> Tuple[ManagePositionOptionalAccounts, Tuple[AccountMeta, ...]]:
        toggles = ManagePositionOptionalAccounts(**self._flags)
        if toggles.set_count() != len(self._tail):
            raise InvalidInvocation(
                f"optional toggles ({toggles.set_count()} set) disagree with tail ({len(self._tail)} accounts)"
            )
        return toggles, tuple(self._tail)


def manage_position_optional_accounts(
    discount_token: Optional[Pubkey] = None,
    referrer: Optional[Pubkey] = None,
) -> Tuple[ManagePositionOptionalAccounts, Tuple[AccountMeta, ...]]:
    """Toggle record + tail for open/close position."""
    return (
        OptionalAccountsBuilder()
        .add("discount_token", discount_token, is_writable=False)
        .add("referrer", referrer, is_writable=True)
        .build()
    )


# ---------------------------------------------------------------------------
# Descriptor
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InvocationDescriptor:
    method: str
    args: Tuple[Any, ...]
    accounts: Dict[str, AccountSpec]
    remaining_accounts: Tuple[AccountMeta, ...] = ()
    signers: Tuple[Keypair, ...] = field(default=(), repr=False)

    def __post_init__(self) -> None:
        toggles = [a for a in self.args if isinstance(a, ManagePositionOptionalAccounts)]
        expected = sum(t.set_count() for t in toggles)
        if expected != len(self.remaining_accounts):
            raise InvalidInvocation(
                f"{self.method}: {expected} optional toggles set but "
                f"{len(self.remaining_accounts)} remaining accounts supplied"
            )
        declared = {spec.pubkey for spec in self.accounts.values() if spec.is_signer}
        for kp in self.signers:
            if kp.pubkey() not in declared:
                raise InvalidInvocation(f"{self.method}: signer {kp.pubkey()} is not a signer account")

    @property
    def optional_accounts(self) -> Optional[ManagePositionOptionalAccounts]:
        for a in self.args:
            if isinstance(a, ManagePositionOptionalAccounts):
                return a
        return None

    def account(self, role: str) -> Pubkey:
        return self.accounts[role].pubkey

    def metas(self) -> List[AccountMeta]:
        return [spec.to_meta() for spec in self.accounts.values()] + list(self.remaining_accounts)

    def audit(self) -> List[Dict[str, Any]]:
        """[{idx, name, pubkey, is_signer, is_writable}] in program order (plus extras)."""
        names = list(self.accounts.keys())
        out: List[Dict[str, Any]] = []
        for i, m in enumerate(self.metas()):
            out.append(
                {
                    "idx": i,
                    "name": names[i] if i < len(names) else "<remaining>",
                    "pubkey": str(m.pubkey),
                    "is_signer": bool(m.is_signer),
                    "is_writable": bool(m.is_writable),
                }
            )
        return out


# ---------------------------------------------------------------------------
# IDL-driven assembly / encoding
# ---------------------------------------------------------------------------


class ProgramInterface:
    """Instruction layouts of a program, read from its Anchor IDL."""

    def __init__(self, program_id: Optional[Pubkey] = None, idl_json: Optional[dict] = None) -> None:
        self.idl = idl_json if idl_json is not None else load_drift_client_idl()
        self.program_id = program_id if program_id is not None else program_id_from_idl(self.idl)
        self._errors = _error_table(self.idl)

    def _ix(self, method: str) -> dict:
        ix = _find_ix_json(self.idl, method)
        if not ix:
            raise InvalidInvocation(f"IDL has no instruction {method!r}")
        return ix

    def describe(
        self,
        method: str,
        args: Sequence[Any],
        accounts: Mapping[str, Pubkey],
        remaining_accounts: Sequence[AccountMeta] = (),
        signers: Sequence[Keypair] = (),
    ) -> InvocationDescriptor:
        """
        Build a descriptor for ``method``. ``accounts`` is keyed by snake_case
        role; every role the program declares must be supplied, nothing else.
        """
        ix = self._ix(method)
        ix_args = ix.get("args") or []
        if len(args) != len(ix_args):
            raise InvalidInvocation(f"{method} takes {len(ix_args)} args, got {len(args)}")

        roles = {_camel_to_snake(k): v for k, v in accounts.items()}
        ordered: Dict[str, AccountSpec] = {}
        for acc in ix.get("accounts", []):
            role = _camel_to_snake(acc["name"])
            if role not in roles:
                raise InvalidInvocation(f"{method}: missing account {role!r}")
            ordered[role] = AccountSpec(
                pubkey=roles.pop(role),
                is_writable=bool(acc.get("isMut")),
                is_signer=bool(acc.get("isSigner")),
            )
        if roles:
            raise InvalidInvocation(f"{method}: unexpected accounts {sorted(roles)}")

        descriptor = InvocationDescriptor(
            method=_camel_to_snake(ix["name"]),
            args=tuple(args),
            accounts=ordered,
            remaining_accounts=tuple(remaining_accounts),
            signers=tuple(signers),
        )
        for row in descriptor.audit():
            logger.debug(
                "[%s] [%02d] %-40s %s signer=%s writable=%s",
                descriptor.method, row["idx"], row["name"], row["pubkey"], row["is_signer"], row["is_writable"],
            )
        return descriptor

    def encode_data(self, descriptor: InvocationDescriptor) -> bytes:
        ix = self._ix(descriptor.method)
        out = bytearray(_anchor_sighash(descriptor.method))
        for spec, value in zip(ix.get("args") or [], descriptor.args):
            try:
                out += self.enc_arg(spec["type"], value)
            except InvalidInvocation as e:
                raise InvalidInvocation(f"{descriptor.method}.{spec['name']}: {e}") from e
        return bytes(out)

    def to_instruction(self, descriptor: InvocationDescriptor) -> Instruction:
        return Instruction(
            program_id=self.program_id,
            data=self.encode_data(descriptor),
            accounts=descriptor.metas(),
        )

    def program_error(self, code: int) -> ProgramError:
        entry = self._errors.get(int(code)) or {}
        return ProgramError(code=int(code), name=entry.get("name"), msg=entry.get("msg"))

    # -- borsh ------------------------------------------------------------

    def enc_arg(self, kind: Any, value: Any) -> bytes:
        if isinstance(kind, str):
            return self._enc_scalar(kind, value)
        if isinstance(kind, dict) and "defined" in kind:
            return self._enc_defined(kind["defined"], value)
        raise InvalidInvocation(f"unsupported IDL type {kind!r}")

    def _enc_scalar(self, kind: str, value: Any) -> bytes:
        if kind == "bool":
            if not isinstance(value, bool):
                raise InvalidInvocation(f"expected bool, got {value!r}")
            return Bool.build(value)
        if kind == "publicKey":
            if not isinstance(value, Pubkey):
                raise InvalidInvocation(f"expected Pubkey, got {value!r}")
            return bytes(value)
        if kind in _INTS:
            codec, bits, signed = _INTS[kind]
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidInvocation(f"expected {kind} integer, got {value!r}")
            lo, hi = (-(1 << (bits - 1)), (1 << (bits - 1)) - 1) if signed else (0, (1 << bits) - 1)
            if not lo <= value <= hi:
                raise InvalidInvocation(f"{value} out of range for {kind}")
            return codec.build(value)
        raise InvalidInvocation(f"unsupported IDL scalar {kind!r}")

    def _enc_defined(self, name: str, value: Any) -> bytes:
        t = _find_type_json(self.idl, name)
        if not t:
            raise InvalidInvocation(f"IDL has no type {name!r}")
        body = t["type"]
        if body.get("kind") == "enum":
            if any(v.get("fields") for v in body.get("variants", [])):
                raise InvalidInvocation(f"enum {name} with payloads is not supported")
            variant = value.value if isinstance(value, Enum) else value
            if isinstance(variant, int) and not isinstance(variant, bool):
                if not 0 <= variant < len(body.get("variants", [])):
                    raise InvalidInvocation(f"{variant} is not a {name} variant index")
                return U8.build(variant)
            try:
                return U8.build(_enum_json_variant_index(self.idl, name, str(variant)))
            except KeyError as e:
                raise InvalidInvocation(str(e)) from e
        out = bytearray()
        for f in body.get("fields", []):
            fname = f["name"]
            missing = object()
            fval = _field(value, _camel_to_snake(fname), fname, default=missing)
            if fval is missing:
                raise InvalidInvocation(f"{name} is missing field {fname!r}")
            out += self.enc_arg(f["type"], fval)
        return bytes(out)


__all__ = [
    "AccountSpec",
    "OptionalAccountsBuilder",
    "manage_position_optional_accounts",
    "InvocationDescriptor",
    "ProgramInterface",
]
