"""Goal escrow configuration constants and runtime settings.

Constants mirror the deployed GoalFactory contract: 32-byte identities,
32-byte description digests and 18-decimal value units.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

# Identities
ADDRESS_SIZE = 32
NULL_ADDRESS = bytes(ADDRESS_SIZE)
DESCRIPTION_HASH_SIZE = 32

# Units
COIN_DECIMALS = 18
COIN_VALUE = 10**COIN_DECIMALS

# Accounts
ACCOUNT_FLAG_REJECTS_TRANSFERS = 0x01

# Time
SECONDS_PER_MINUTE = 60
SECONDS_PER_DAY = 86_400

# Seed / demo defaults
DEFAULT_ESCROW_AMOUNT = COIN_VALUE * 5 // 100  # 0.05
TEST_ACCOUNT_BALANCE = COIN_VALUE * 10_000
GENESIS_TIMESTAMP = 1_700_000_000

# Networks
NETWORK_LOCALHOST = "localhost"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8545


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").lower() in ("true", "1", "yes")


@dataclass
class LedgerConfig:
    """Runtime settings for the CLI and HTTP node."""

    state_path: str = "ledger_state.json"
    deploy_dir: str = "deployed"
    network: str = NETWORK_LOCALHOST
    endpoint: str = ""
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    verbose: bool = False
    lock_timeout: float = 10.0

    @classmethod
    def from_env(cls) -> "LedgerConfig":
        """Load configuration from environment variables."""
        config = cls()
        config.state_path = os.environ.get("GOAL_ESCROW_STATE", config.state_path)
        config.deploy_dir = os.environ.get("GOAL_ESCROW_DEPLOY_DIR", config.deploy_dir)
        config.network = os.environ.get("GOAL_ESCROW_NETWORK", config.network)
        config.endpoint = os.environ.get("GOAL_ESCROW_ENDPOINT", config.endpoint)
        config.host = os.environ.get("GOAL_ESCROW_HOST", config.host)
        config.port = int(os.environ.get("GOAL_ESCROW_PORT", config.port))
        config.verbose = _env_flag("GOAL_ESCROW_VERBOSE")
        config.lock_timeout = float(os.environ.get("GOAL_ESCROW_LOCK_TIMEOUT", config.lock_timeout))
        return config

    @property
    def deploy_file(self) -> str:
        return os.path.join(self.deploy_dir, f"{self.network}.json")
