from pathlib import Path
from solders.pubkey import Pubkey

PACKAGE_ROOT = Path(__file__).resolve().parents[1]
PROJECT_ROOT = PACKAGE_ROOT.parent

DRIFT_CLIENT_PROGRAM_ID   = Pubkey.from_string("EGovrRumVsvCzcvHSAYZxzsiUiMTTsMSRjuwUVSxYkXt")
CLEARING_HOUSE_PROGRAM_ID = Pubkey.from_string("AsW7LnXB9UA1uec9wi9MctYTgTz7YH9snhxd16GsFaGX")

TOKEN_PROGRAM  = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
SYSTEM_PROGRAM = Pubkey.from_string("11111111111111111111111111111111")
RENT_SYSVAR    = Pubkey.from_string("SysvarRent111111111111111111111111111111111")

# drift_client program seeds
CONFIG_SEED           = b"drift_client"
COLLATERAL_VAULT_SEED = b"collateral_vault"

# clearing house seeds (owned by the clearing house program)
CLEARING_HOUSE_STATE_SEED = b"clearing_house"
CLEARING_HOUSE_USER_SEED  = b"user"

IDL_PATH = Path(__file__).parent / "idl" / "drift_client.json"

# "no limit" as understood by the clearing house
NO_LIMIT_PRICE = 0
# single-position flows always look at the first slot of the positions table
PRIMARY_POSITION_SLOT = 0
