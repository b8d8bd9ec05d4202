# drift_client/services/signer_loader.py
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from solders.keypair import Keypair

logger = logging.getLogger(__name__)

# Last successful load meta (shown by the console health command)
SIGNER_INFO: Dict[str, str] = {"method": "unknown", "path": ""}


def _mark(kp: Keypair, method: str, path: str) -> Keypair:
    SIGNER_INFO.update({"method": method, "path": path, "pubkey": str(kp.pubkey())})
    return kp


# ---------------------------------------------------------------------
# Parsers (formats)
# ---------------------------------------------------------------------
def _try_json_array(raw: str, path: str) -> Tuple[Optional[Keypair], Optional[str]]:
    try:
        arr = json.loads(raw)
    except json.JSONDecodeError as e:
        return None, f"json parse failed: {e}"
    if not (isinstance(arr, list) and all(isinstance(x, int) for x in arr)):
        return None, "not a json array id.json"
    if len(arr) not in (32, 64):
        return None, f"json array length {len(arr)} not 32/64"
    try:
        b = bytes(arr)
        kp = Keypair.from_bytes(b) if len(b) == 64 else Keypair.from_seed(b)
    except ValueError as e:
        return None, f"invalid keypair bytes: {e}"
    return _mark(kp, "json_array", path), None


def _try_base58(raw: str, path: str) -> Tuple[Optional[Keypair], Optional[str]]:
    text = raw.strip()
    if not text or any(c.isspace() for c in text):
        return None, "not a single base58 token"
    try:
        return _mark(Keypair.from_base58_string(text), "base58", path), None
    except ValueError as e:
        return None, f"base58 decode failed: {e}"


# ---------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------
def load_signer(path: Union[str, Path]) -> Keypair:
    """
    Load the wallet keypair from ``path``.

    Accepts a Solana CLI ``id.json`` (array of 64 ints, or 32 seed bytes) or a
    base58-encoded 64-byte secret key on a single line.
    """
    resolved = Path(path).expanduser()
    if not resolved.exists():
        raise FileNotFoundError(f"Signer file not found: {resolved}")

    raw = resolved.read_text(encoding="utf-8").strip()
    errors = []
    for fn in (_try_json_array, _try_base58):
        kp, err = fn(raw, str(resolved))
        if kp is not None:
            logger.debug("Loaded signer %s from %s (%s)", kp.pubkey(), resolved, SIGNER_INFO["method"])
            return kp
        errors.append(err)
    raise ValueError(
        f"Unsupported signer format in {resolved} ({'; '.join(e for e in errors if e)}). Use one of:\n"
        "- Solana id.json (array of 64 ints), or\n"
        "- base58 secret key string."
    )


def signer_info() -> Dict[str, str]:
    return SIGNER_INFO.copy()


def diagnose_signer(path: Union[str, Path]) -> Dict[str, Any]:
    resolved = Path(path).expanduser()
    out: Dict[str, Any] = {"spec": str(path), "found": str(resolved), "exists": resolved.exists()}
    if not out["exists"]:
        out["error"] = "signer file not found"
        return out
    try:
        kp = load_signer(resolved)
    except ValueError as e:
        out["error"] = str(e)
        return out
    out["pubkey"] = str(kp.pubkey())
    out["method"] = SIGNER_INFO["method"]
    return out


__all__ = ["load_signer", "signer_info", "diagnose_signer"]
