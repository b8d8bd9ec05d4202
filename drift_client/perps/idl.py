import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Union

from anchorpy import Idl
from solders.pubkey import Pubkey

from .constants import IDL_PATH

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def load_anchor_idl(path: PathLike) -> Idl:
    """Load an Anchor JSON IDL from disk into an anchorpy ``Idl``."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(
            f"IDL not found at {path}.\n"
            "Point CLEARING_HOUSE_IDL_PATH at the clearing house JSON IDL."
        )
    text = path.read_text(encoding="utf-8")
    logger.debug("Loaded IDL from %s", path)
    return Idl.from_json(text)


def _load_idl_json(path: PathLike) -> dict:
    return json.loads(Path(path).read_text(encoding="utf-8"))


@lru_cache(maxsize=None)
def load_drift_client_idl() -> Dict[str, Any]:
    """The drift_client program IDL shipped with this package."""
    return _load_idl_json(IDL_PATH)


def program_id_from_idl(idl_json: dict) -> Pubkey:
    address = (idl_json.get("metadata") or {}).get("address") or idl_json.get("address")
    if not address:
        raise ValueError("IDL missing program address (metadata.address/address).")
    return Pubkey.from_string(address)


def _find_ix_json(idl_json: dict, ix_name: str) -> Optional[dict]:
    for ix in idl_json.get("instructions", []):
        if ix.get("name") == ix_name:
            return ix
    snake = _camel_to_snake(ix_name)
    for ix in idl_json.get("instructions", []):
        if _camel_to_snake(ix.get("name", "")) == snake:
            return ix
    return None


def _find_type_json(idl_json: dict, name: str) -> Optional[dict]:
    for t in (idl_json.get("types") or []) + (idl_json.get("accounts") or []):
        if t.get("name") == name:
            return t
    return None


def _enum_json_variant_index(idl_json: dict, enum_name: str, want: str) -> int:
    t = _find_type_json(idl_json, enum_name)
    if not t or t.get("type", {}).get("kind") != "enum":
        raise KeyError(f"IDL has no enum {enum_name}")
    want_low = (want or "").lower()
    for i, v in enumerate(t["type"].get("variants", [])):
        if v.get("name", "").lower() == want_low:
            return i
    raise KeyError(f"{enum_name} has no variant {want}")


def _error_table(idl_json: dict) -> Dict[int, dict]:
    return {int(e["code"]): e for e in (idl_json.get("errors") or [])}


def _camel_to_snake(name: str) -> str:
    out = []
    for i, ch in enumerate(name):
        if ch.isupper() and i:
            out.append("_")
        out.append(ch.lower())
    return "".join(out)
