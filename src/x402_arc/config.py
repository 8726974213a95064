"""
X402 Network Configuration
Centralized configuration for chain ids, assets and injected runtime settings
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping

from dotenv import load_dotenv

from x402_arc.exceptions import ConfigurationError, UnsupportedNetworkError

X402_VERSION = "2"


class NetworkConfig:
    """Network configuration for chain IDs, assets and RPC endpoints"""

    ARC_TESTNET = "eip155:5042002"

    CHAIN_IDS: Dict[str, int] = {
        "eip155:5042002": 5042002,
    }

    RPC_URLS: Dict[str, str] = {
        "eip155:5042002": "https://rpc.testnet.arc.network",
    }

    EXPLORER_URLS: Dict[str, str] = {
        "eip155:5042002": "https://testnet.arcscan.app",
    }

    # Arc pays gas in USDC: the token address is also the native asset,
    # 6 decimals through the ERC20 interface, 18 decimals as native value.
    NATIVE_ASSETS: Dict[str, str] = {
        "eip155:5042002": "0x3600000000000000000000000000000000000000",
    }
    NATIVE_DECIMALS = 18

    @classmethod
    def get_rpc_url(cls, network: str) -> str | None:
        """Get RPC URL for a network, or None if not configured"""
        return cls.RPC_URLS.get(network)

    @classmethod
    def get_explorer_url(cls, network: str) -> str | None:
        return cls.EXPLORER_URLS.get(network)

    @classmethod
    def is_native_asset(cls, network: str, asset: str) -> bool:
        native = cls.NATIVE_ASSETS.get(network)
        return native is not None and native.lower() == asset.lower()

    @classmethod
    def get_chain_id(cls, network: str) -> int:
        """Get chain ID for network

        Args:
            network: Network identifier (e.g., "eip155:5042002")

        Returns:
            Chain ID as integer

        Raises:
            UnsupportedNetworkError: If network is not an EVM identifier
        """
        if network.startswith("eip155:"):
            try:
                return int(network.split(":", 1)[1])
            except (ValueError, IndexError):
                raise UnsupportedNetworkError(f"Invalid EVM network: {network}")

        chain_id = cls.CHAIN_IDS.get(network)
        if chain_id is None:
            raise UnsupportedNetworkError(f"Unsupported network: {network}")
        return chain_id


_SETTINGS_ENV_KEYS = {
    "rpc_url": "ARC_RPC_URL",
    "chain_id": "X402_CHAIN_ID",
    "asset_address": "X402_ASSET_ADDRESS",
    "facilitator_url": "X402_FACILITATOR_URL",
    "facilitator_private_key": "X402_FACILITATOR_PRIVATE_KEY",
    "operator_private_key": "X402_OPERATOR_PRIVATE_KEY",
    "claim_ttl_seconds": "X402_CLAIM_TTL_SECONDS",
    "ledger_timeout_seconds": "X402_LEDGER_TIMEOUT_SECONDS",
    "facilitator_host": "FACILITATOR_HOST",
    "facilitator_port": "FACILITATOR_PORT",
    "log_level": "X402_LOG_LEVEL",
}

_INT_SETTINGS = ("chain_id", "claim_ttl_seconds", "ledger_timeout_seconds", "facilitator_port")


@dataclass(frozen=True)
class X402Settings:
    """
    Injected runtime configuration.

    Nothing in the protocol core reads the environment directly; callers
    build one of these at process start (usually via :meth:`from_env`) and
    pass the values down to the objects they construct.
    """

    chain_id: int = 5042002
    rpc_url: str | None = None
    asset_address: str = NetworkConfig.NATIVE_ASSETS[NetworkConfig.ARC_TESTNET]
    facilitator_url: str | None = None
    facilitator_private_key: str | None = field(default=None, repr=False)
    operator_private_key: str | None = field(default=None, repr=False)
    claim_ttl_seconds: int = 300
    ledger_timeout_seconds: int = 60
    facilitator_host: str = "0.0.0.0"
    facilitator_port: int = 8001
    log_level: str = "INFO"

    @property
    def network(self) -> str:
        return f"eip155:{self.chain_id}"

    @property
    def resolved_rpc_url(self) -> str | None:
        return self.rpc_url or NetworkConfig.get_rpc_url(self.network)

    @classmethod
    def from_env(
        cls,
        env: Mapping[str, str] | None = None,
        env_file: str | Path | None = None,
    ) -> "X402Settings":
        """
        Load settings from the process environment (and an optional .env file).

        Raises:
            ConfigurationError: if a numeric setting cannot be parsed
        """
        if env is None:
            if env_file is not None:
                load_dotenv(env_file)
            else:
                load_dotenv()
            env = os.environ

        values: dict[str, object] = {}
        for name, key in _SETTINGS_ENV_KEYS.items():
            raw = env.get(key)
            if raw is None or raw == "":
                continue
            if name in _INT_SETTINGS:
                try:
                    values[name] = int(raw)
                except ValueError:
                    raise ConfigurationError(f"{key} must be an integer, got {raw!r}")
            else:
                values[name] = raw

        settings = cls(**values)  # type: ignore[arg-type]
        if settings.claim_ttl_seconds <= 0:
            raise ConfigurationError("X402_CLAIM_TTL_SECONDS must be positive")
        return settings
