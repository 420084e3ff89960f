#!/usr/bin/env python3
"""Tests for the configuration module."""

import logging

import pytest

from conftest import CONTRACT_ADDRESS
from reasoning_oracle.config import (
    DEFAULT_MODEL,
    ChainConfig,
    OracleConfig,
    SchedulingConfig,
)

KEY = "1" * 64

ENV_VARS = (
    "RPC_URL", "BSC_RPC", "CONTRACT_ADDRESS", "ORACLE_WALLET_PK", "INFERENCE_API_KEY",
    "HODLAI_API_KEY", "DEFAULT_MODEL", "WORKER_COUNT", "WORKER_INDEX", "START_BLOCK",
    "PRECHECK_FULFILLMENT", "MAX_BLOCK_RANGE", "DATABASE_URL",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestChainConfig:
    """Tests for ChainConfig."""

    def test_checksum_address_conversion(self):
        config = ChainConfig(rpc_url="https://test.rpc", contract_address=CONTRACT_ADDRESS.lower())
        assert config.contract_address == CONTRACT_ADDRESS

    def test_invalid_rpc_url_scheme(self):
        """Batched reads need HTTP; websocket URLs are rejected."""
        with pytest.raises(ValueError, match="Invalid RPC URL scheme"):
            ChainConfig(rpc_url="wss://test.rpc", contract_address=CONTRACT_ADDRESS)

    def test_invalid_contract_address(self):
        with pytest.raises(ValueError, match="Invalid oracle contract address"):
            ChainConfig(rpc_url="https://test.rpc", contract_address="invalid-address")

    def test_invalid_private_key_length(self):
        with pytest.raises(ValueError, match="Invalid private key length"):
            ChainConfig(rpc_url="https://test.rpc", contract_address=CONTRACT_ADDRESS, private_key="0x1234")

    def test_non_hex_private_key(self):
        with pytest.raises(ValueError, match="hexadecimal"):
            ChainConfig(rpc_url="https://test.rpc", contract_address=CONTRACT_ADDRESS, private_key="zz" * 32)


class TestSchedulingConfig:
    """Tests for SchedulingConfig."""

    def test_defaults(self):
        config = SchedulingConfig()
        assert (config.indexer_interval, config.worker_interval) == (5.0, 3.0)
        assert config.max_block_range == 2000
        assert (config.worker_index, config.worker_count) == (0, 1)

    @pytest.mark.parametrize("index,count", [(3, 3), (-1, 2), (0, 0)])
    def test_invalid_shard(self, index, count):
        with pytest.raises(ValueError):
            SchedulingConfig(worker_index=index, worker_count=count)

    def test_non_positive_range_cap(self):
        with pytest.raises(ValueError, match="Max block range"):
            SchedulingConfig(max_block_range=0)


class TestOracleConfig:
    """Tests for OracleConfig.from_env and friends."""

    def test_from_env_minimal(self, clean_env):
        clean_env.setenv("CONTRACT_ADDRESS", CONTRACT_ADDRESS)
        clean_env.setenv("ORACLE_WALLET_PK", KEY)

        config = OracleConfig.from_env()

        assert config.chain.private_key == "0x" + KEY
        assert config.chain.rpc_url.startswith("https://")
        assert config.inference.default_model == DEFAULT_MODEL
        assert config.scheduling.start_block is None
        assert config.scheduling.precheck_fulfillment is True

    def test_from_env_overrides(self, clean_env):
        clean_env.setenv("CONTRACT_ADDRESS", CONTRACT_ADDRESS)
        clean_env.setenv("ORACLE_WALLET_PK", "0x" + KEY)
        clean_env.setenv("BSC_RPC", "https://bsc.test")
        clean_env.setenv("HODLAI_API_KEY", "legacy-key")
        clean_env.setenv("WORKER_COUNT", "4")
        clean_env.setenv("WORKER_INDEX", "2")
        clean_env.setenv("START_BLOCK", "1000")
        clean_env.setenv("PRECHECK_FULFILLMENT", "false")
        clean_env.setenv("MAX_BLOCK_RANGE", "500")

        config = OracleConfig.from_env()

        assert config.chain.rpc_url == "https://bsc.test"
        assert config.inference.api_key == "legacy-key"
        assert (config.scheduling.worker_index, config.scheduling.worker_count) == (2, 4)
        assert config.scheduling.start_block == 1000
        assert config.scheduling.precheck_fulfillment is False
        assert config.scheduling.max_block_range == 500

    def test_rpc_url_wins_over_bsc_rpc(self, clean_env):
        clean_env.setenv("CONTRACT_ADDRESS", CONTRACT_ADDRESS)
        clean_env.setenv("RPC_URL", "https://primary.test")
        clean_env.setenv("BSC_RPC", "https://bsc.test")

        config = OracleConfig.from_env(require_signer=False)

        assert config.chain.rpc_url == "https://primary.test"

    def test_missing_contract_address(self, clean_env):
        with pytest.raises(ValueError, match="CONTRACT_ADDRESS"):
            OracleConfig.from_env()

    def test_missing_key_required_for_worker(self, clean_env):
        clean_env.setenv("CONTRACT_ADDRESS", CONTRACT_ADDRESS)

        with pytest.raises(ValueError, match="ORACLE_WALLET_PK"):
            OracleConfig.from_env()

    def test_indexer_runs_without_key(self, clean_env):
        clean_env.setenv("CONTRACT_ADDRESS", CONTRACT_ADDRESS)

        config = OracleConfig.from_env(require_signer=False)

        assert config.chain.private_key is None

    def test_with_shard(self, clean_env):
        clean_env.setenv("CONTRACT_ADDRESS", CONTRACT_ADDRESS)
        clean_env.setenv("START_BLOCK", "77")
        config = OracleConfig.from_env(require_signer=False)

        sharded = config.with_shard(1, 3)

        assert (sharded.scheduling.worker_index, sharded.scheduling.worker_count) == (1, 3)
        assert sharded.scheduling.start_block == 77
        assert sharded.chain is config.chain
        assert config.scheduling.worker_count == 1

    def test_log_config_hides_secrets(self, clean_env, caplog):
        clean_env.setenv("CONTRACT_ADDRESS", CONTRACT_ADDRESS)
        clean_env.setenv("ORACLE_WALLET_PK", KEY)
        clean_env.setenv("INFERENCE_API_KEY", "sk-very-secret")
        config = OracleConfig.from_env()

        with caplog.at_level(logging.INFO, logger="reasoning_oracle.config"):
            config.log_config()

        assert "[SET]" in caplog.text
        assert KEY not in caplog.text
        assert "sk-very-secret" not in caplog.text
