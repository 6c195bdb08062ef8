"""
Tracker configuration.

Polling and timeout knobs come from the environment (optionally a .env
file); the chain topology comes from config/networks.json, in the same
layout the deployment scripts use:

    {
      "networks": {
        "local": {
          "name": "Local 3-chain topology",
          "chains": [
            {"name": "chain-a", "selector": 1001,
             "rpc_url": "http://127.0.0.1:8545",
             "router": "0x...", "offramp": "0x...", ...}
          ]
        }
      }
    }
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from eth_utils import is_address

from .errors import ConfigError

DEFAULT_CONFIG_PATH = Path("config/networks.json")


@dataclass(frozen=True)
class TrackerConfig:
    poll_interval: float = 2.0
    commit_timeout: float = 300.0
    exec_timeout: float = 300.0
    confirm_timeout: float = 120.0
    max_block_range: Optional[int] = None
    max_workers: Optional[int] = None

    def __post_init__(self):
        if self.poll_interval <= 0:
            raise ConfigError(f"poll_interval must be positive, got {self.poll_interval}")
        for name in ("commit_timeout", "exec_timeout", "confirm_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive, got {getattr(self, name)}")
        if self.max_block_range is not None and self.max_block_range < 1:
            raise ConfigError(f"max_block_range must be at least 1, got {self.max_block_range}")

    @classmethod
    def from_env(cls) -> "TrackerConfig":
        """Build a config from CCIP_* environment variables, falling back to defaults"""
        load_dotenv()
        defaults = cls()
        max_block_range = _env_number("CCIP_MAX_BLOCK_RANGE", None, int)
        return cls(
            poll_interval=_env_number("CCIP_POLL_INTERVAL", defaults.poll_interval, float),
            commit_timeout=_env_number("CCIP_COMMIT_TIMEOUT", defaults.commit_timeout, float),
            exec_timeout=_env_number("CCIP_EXEC_TIMEOUT", defaults.exec_timeout, float),
            confirm_timeout=_env_number("CCIP_CONFIRM_TIMEOUT", defaults.confirm_timeout, float),
            max_block_range=max_block_range,
        )


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise ConfigError(f"{name} is not a valid number: {raw!r}") from e


@dataclass(frozen=True)
class ChainConfig:
    name: str
    selector: int
    rpc_url: str
    router: str
    offramp: str
    receiver: Optional[str] = None
    fee_quoter: Optional[str] = None
    link_token: Optional[str] = None
    extra: dict = field(default_factory=dict, compare=False)


def resolve_rpc_url(net_config: dict) -> str:
    """Build the RPC URL from a literal url or an Alchemy template"""
    if "rpc_url" in net_config:
        return net_config["rpc_url"]
    if "rpc_url_template" in net_config:
        api_key = os.getenv("ALCHEMY_API_KEY", "")
        if not api_key:
            raise ConfigError(
                f"ALCHEMY_API_KEY not set, required for {net_config.get('name', 'chain')}"
            )
        return net_config["rpc_url_template"].replace("{ALCHEMY_API_KEY}", api_key)
    raise ConfigError(f"No RPC URL configured for {net_config.get('name', 'chain')}")


def _parse_chain(entry: dict) -> ChainConfig:
    for key in ("name", "selector", "router", "offramp"):
        if key not in entry:
            raise ConfigError(f"chain entry missing '{key}': {entry}")

    for key in ("router", "offramp", "receiver", "fee_quoter", "link_token"):
        value = entry.get(key)
        if value is not None and not is_address(value):
            raise ConfigError(f"{entry['name']}: {key} is not an address: {value}")

    known = {"name", "selector", "rpc_url", "rpc_url_template", "router", "offramp",
             "receiver", "fee_quoter", "link_token"}
    return ChainConfig(
        name=entry["name"],
        selector=int(entry["selector"]),
        rpc_url=resolve_rpc_url(entry),
        router=entry["router"],
        offramp=entry["offramp"],
        receiver=entry.get("receiver"),
        fee_quoter=entry.get("fee_quoter"),
        link_token=entry.get("link_token"),
        extra={k: v for k, v in entry.items() if k not in known},
    )


def load_topology(network: str, path: Path = DEFAULT_CONFIG_PATH) -> List[ChainConfig]:
    """Load the chains of one network topology from the networks config file"""
    load_dotenv()
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"{path} not found")

    with open(path) as f:
        networks = json.load(f).get("networks", {})

    if network not in networks:
        raise ConfigError(
            f"Unknown network: {network} (available: {', '.join(sorted(networks)) or 'none'})"
        )

    chains = [_parse_chain(entry) for entry in networks[network].get("chains", [])]
    if len(chains) < 2:
        raise ConfigError(f"{network}: a topology needs at least 2 chains, got {len(chains)}")

    selectors = [chain.selector for chain in chains]
    if len(set(selectors)) != len(selectors):
        raise ConfigError(f"{network}: duplicate chain selectors {selectors}")

    return chains
