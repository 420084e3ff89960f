#!/usr/bin/env python3
"""Configuration management for the Reasoning Oracle node.

This module provides type-safe configuration dataclasses with validation
for the oracle node. Configuration is loaded from environment variables
with sensible defaults where appropriate.
"""

import logging
import os
from dataclasses import dataclass, field
from urllib.parse import urlparse

from web3 import Web3

# Get logger for this module
logger = logging.getLogger(__name__)

DEFAULT_RPC_URL = "https://rpc.ankr.com/bsc"
DEFAULT_INFERENCE_URL = "https://api.hodlai.fun/v1/chat/completions"
DEFAULT_MODEL = "gemini-3.1-pro-preview"
DEFAULT_TRACE_REFERENCE = "QmOffChainDataNotImplementedYet"


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _normalize_private_key(key: str | None) -> str | None:
    if not key:
        return None
    key = key.strip()
    return key if key.startswith("0x") else "0x" + key


@dataclass(frozen=True, slots=True)
class ChainConfig:
    """Configuration for the chain hosting the oracle contract.

    Attributes:
        rpc_url: HTTP(S) JSON-RPC endpoint (may sit behind a load balancer)
        contract_address: Checksummed address of the oracle contract
        private_key: Signing key for fulfillment transactions
        request_timeout: Per-request RPC timeout in seconds
        gas_limit: Gas limit for fulfillment transactions
    """

    rpc_url: str
    contract_address: str
    private_key: str | None = None
    request_timeout: int = 30
    gas_limit: int = 500_000

    def __post_init__(self) -> None:
        """Validate chain configuration."""
        if not self.rpc_url:
            raise ValueError("RPC URL is required (RPC_URL)")

        parsed = urlparse(self.rpc_url)
        if parsed.scheme not in ('http', 'https'):
            raise ValueError(
                f"Invalid RPC URL scheme: {parsed.scheme}. "
                "Expected http or https (batched JSON-RPC)"
            )

        if not self.contract_address:
            raise ValueError("Oracle contract address is required (CONTRACT_ADDRESS)")

        if not Web3.is_address(self.contract_address):
            raise ValueError(f"Invalid oracle contract address: {self.contract_address}")

        checksummed = Web3.to_checksum_address(self.contract_address)
        if checksummed != self.contract_address:
            # Use object.__setattr__ since dataclass is frozen
            object.__setattr__(self, 'contract_address', checksummed)

        if self.private_key:
            key = self.private_key[2:] if self.private_key.startswith('0x') else self.private_key
            if len(key) != 64:
                raise ValueError(
                    f"Invalid private key length. Expected 64 hex characters, got {len(key)}"
                )
            try:
                int(key, 16)
            except ValueError:
                raise ValueError("Invalid private key format. Must be hexadecimal") from None

        if self.request_timeout <= 0:
            raise ValueError(f"RPC timeout must be positive, got {self.request_timeout}")
        if self.gas_limit <= 0:
            raise ValueError(f"Gas limit must be positive, got {self.gas_limit}")


@dataclass(frozen=True, slots=True)
class InferenceConfig:
    """Configuration for the chat-completion inference provider."""

    api_url: str = DEFAULT_INFERENCE_URL
    api_key: str = ""
    default_model: str = DEFAULT_MODEL
    temperature: float = 0.01
    max_tokens: int = 50
    timeout: int = 60

    def __post_init__(self) -> None:
        """Validate inference configuration."""
        parsed = urlparse(self.api_url)
        if parsed.scheme not in ('http', 'https'):
            raise ValueError(f"Invalid inference API URL: {self.api_url}")
        if not self.default_model:
            raise ValueError("Default model must not be empty (DEFAULT_MODEL)")
        if self.max_tokens <= 0:
            raise ValueError(f"Max tokens must be positive, got {self.max_tokens}")
        if self.timeout <= 0:
            raise ValueError(f"Inference timeout must be positive, got {self.timeout}")


@dataclass(frozen=True, slots=True)
class StoreConfig:
    """Configuration for the persisted request store."""

    database_url: str = "sqlite:///oracle.db"
    busy_timeout: int = 15  # seconds a writer waits on a locked database

    def __post_init__(self) -> None:
        """Validate store configuration."""
        if not self.database_url:
            raise ValueError("Database URL is required (DATABASE_URL)")
        if self.busy_timeout <= 0:
            raise ValueError(f"Busy timeout must be positive, got {self.busy_timeout}")


@dataclass(frozen=True, slots=True)
class SchedulingConfig:
    """Polling cadence, range capping and worker sharding."""
    indexer_interval: float = 5.0  # seconds between indexer ticks
    worker_interval: float = 3.0  # seconds between worker ticks
    max_block_range: int = 2000  # widest log query per indexer tick
    worker_count: int = 1
    worker_index: int = 0
    precheck_fulfillment: bool = True
    start_block: int | None = None  # cursor seed at first boot
    status_interval: float = 30.0  # seconds between status log lines

    def __post_init__(self) -> None:
        """Validate scheduling configuration."""
        if self.indexer_interval <= 0:
            raise ValueError(f"Indexer interval must be positive, got {self.indexer_interval}")
        if self.worker_interval <= 0:
            raise ValueError(f"Worker interval must be positive, got {self.worker_interval}")
        if self.max_block_range <= 0:
            raise ValueError(f"Max block range must be positive, got {self.max_block_range}")
        if self.worker_count < 1:
            raise ValueError(f"Worker count must be at least 1, got {self.worker_count}")
        if not 0 <= self.worker_index < self.worker_count:
            raise ValueError(
                f"Worker index must be in [0, {self.worker_count}), got {self.worker_index}"
            )
        if self.start_block is not None and self.start_block < 0:
            raise ValueError(f"Start block must be non-negative, got {self.start_block}")


@dataclass(frozen=True, slots=True)
class OracleConfig:
    """Main configuration for the Reasoning Oracle node.

    Attributes:
        chain: Oracle contract and RPC settings
        inference: Inference provider settings
        store: Persisted store settings
        scheduling: Loop intervals, range cap and sharding
        trace_reference: Placeholder trace reference submitted with fulfillments
    """

    chain: ChainConfig
    inference: InferenceConfig = field(default_factory=InferenceConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    scheduling: SchedulingConfig = field(default_factory=SchedulingConfig)
    trace_reference: str = DEFAULT_TRACE_REFERENCE

    @classmethod
    def from_env(cls, require_signer: bool = True) -> "OracleConfig":
        """Load configuration from environment variables.

        Args:
            require_signer: Whether ORACLE_WALLET_PK must be present
                (the fulfillment worker needs it, a pure indexer does not)

        Returns:
            OracleConfig instance with loaded values

        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        rpc_url = os.environ.get("RPC_URL") or os.environ.get("BSC_RPC") or DEFAULT_RPC_URL

        contract_address = os.environ.get("CONTRACT_ADDRESS", "")
        if not contract_address:
            raise ValueError(
                "CONTRACT_ADDRESS environment variable is required. "
                "This should be the reasoning oracle contract address."
            )

        private_key = _normalize_private_key(os.environ.get("ORACLE_WALLET_PK"))
        if require_signer and not private_key:
            raise ValueError(
                "ORACLE_WALLET_PK environment variable is required. "
                "It signs fulfillReason transactions."
            )

        chain = ChainConfig(
            rpc_url=rpc_url,
            contract_address=contract_address,
            private_key=private_key,
            request_timeout=int(os.environ.get("RPC_TIMEOUT", "30")),
            gas_limit=int(os.environ.get("FULFILL_GAS_LIMIT", "500000")),
        )

        inference = InferenceConfig(
            api_url=os.environ.get("INFERENCE_API_URL", DEFAULT_INFERENCE_URL),
            api_key=os.environ.get("INFERENCE_API_KEY") or os.environ.get("HODLAI_API_KEY", ""),
            default_model=os.environ.get("DEFAULT_MODEL", DEFAULT_MODEL),
            temperature=float(os.environ.get("INFERENCE_TEMPERATURE", "0.01")),
            max_tokens=int(os.environ.get("INFERENCE_MAX_TOKENS", "50")),
            timeout=int(os.environ.get("INFERENCE_TIMEOUT", "60")),
        )

        store = StoreConfig(
            database_url=os.environ.get("DATABASE_URL", "sqlite:///oracle.db"),
            busy_timeout=int(os.environ.get("DB_BUSY_TIMEOUT", "15")),
        )

        start_block = os.environ.get("START_BLOCK")
        scheduling = SchedulingConfig(
            indexer_interval=float(os.environ.get("INDEXER_INTERVAL", "5")),
            worker_interval=float(os.environ.get("WORKER_INTERVAL", "3")),
            max_block_range=int(os.environ.get("MAX_BLOCK_RANGE", "2000")),
            worker_count=int(os.environ.get("WORKER_COUNT", "1")),
            worker_index=int(os.environ.get("WORKER_INDEX", "0")),
            precheck_fulfillment=_env_bool("PRECHECK_FULFILLMENT", True),
            start_block=int(start_block) if start_block else None,
        )

        return cls(
            chain=chain,
            inference=inference,
            store=store,
            scheduling=scheduling,
            trace_reference=os.environ.get("TRACE_REFERENCE", DEFAULT_TRACE_REFERENCE),
        )

    def with_shard(self, worker_index: int, worker_count: int) -> "OracleConfig":
        """Create a new config with the worker shard overridden.

        Since the config is frozen, a new instance is built.
        """
        s = self.scheduling
        scheduling = SchedulingConfig(
            indexer_interval=s.indexer_interval,
            worker_interval=s.worker_interval,
            max_block_range=s.max_block_range,
            worker_count=worker_count,
            worker_index=worker_index,
            precheck_fulfillment=s.precheck_fulfillment,
            start_block=s.start_block,
            status_interval=s.status_interval,
        )
        return OracleConfig(
            chain=self.chain,
            inference=self.inference,
            store=self.store,
            scheduling=scheduling,
            trace_reference=self.trace_reference,
        )

    def log_config(self) -> None:
        """Log the configuration in a readable format, hiding secrets."""
        logger.info("=" * 60)
        logger.info("Reasoning Oracle Configuration")
        logger.info("=" * 60)

        logger.info("Chain:")
        logger.info(f"  RPC URL: {self.chain.rpc_url}")
        logger.info(f"  Contract: {self.chain.contract_address}")
        logger.info(f"  Signer Key: {'[SET]' if self.chain.private_key else '[NOT SET]'}")
        logger.info(f"  RPC Timeout: {self.chain.request_timeout} seconds")

        logger.info("Inference:")
        logger.info(f"  API URL: {self.inference.api_url}")
        logger.info(f"  API Key: {'[SET]' if self.inference.api_key else '[NOT SET]'}")
        logger.info(f"  Default Model: {self.inference.default_model}")
        logger.info(f"  Timeout: {self.inference.timeout} seconds")

        logger.info("Store:")
        logger.info(f"  Database: {self.store.database_url}")
        logger.info(f"  Busy Timeout: {self.store.busy_timeout} seconds")

        logger.info("Scheduling:")
        logger.info(f"  Indexer Interval: {self.scheduling.indexer_interval} seconds")
        logger.info(f"  Worker Interval: {self.scheduling.worker_interval} seconds")
        logger.info(f"  Max Block Range: {self.scheduling.max_block_range}")
        logger.info(f"  Shard: {self.scheduling.worker_index}/{self.scheduling.worker_count}")
        logger.info(f"  Pre-check Fulfillment: {self.scheduling.precheck_fulfillment}")
        if self.scheduling.start_block is not None:
            logger.info(f"  Start Block: {self.scheduling.start_block}")

        logger.info("=" * 60)
