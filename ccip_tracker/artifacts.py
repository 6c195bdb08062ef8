"""
Lane contract sources and their compiled artifacts.

The Vyper sources live next to this module and are compiled on demand, the
same way the deployment scripts compile them, so the ABI the tracker decodes
events with always matches the deployed bytecode.
"""

from functools import lru_cache
from pathlib import Path

from vyper import compile_code

CONTRACT_DIR = Path(__file__).parent / "contracts"

ROUTER = "Router"
OFFRAMP = "OffRamp"
FEE_QUOTER = "FeeQuoter"

LANE_CONTRACTS = (ROUTER, OFFRAMP, FEE_QUOTER)


def contract_path(name: str) -> Path:
    path = CONTRACT_DIR / f"{name}.vy"
    if not path.exists():
        raise FileNotFoundError(f"Contract not found: {path}")
    return path


@lru_cache(maxsize=None)
def compile_contract(name: str) -> dict:
    """Compile a lane contract, returning {'abi': [...], 'bytecode': '0x...'}"""
    with open(contract_path(name)) as f:
        source_code = f.read()
    return compile_code(source_code, output_formats=["abi", "bytecode"])


def load_abi(name: str) -> list:
    return compile_contract(name)["abi"]
