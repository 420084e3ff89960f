#!/usr/bin/env python3
"""Entry point for the Reasoning Oracle node.

Loads configuration from the environment (and an optional .env file), then
runs the event indexer and/or the fulfillment worker until interrupted.
"""

import argparse
import asyncio
import contextlib
import logging
import os
import signal
import sys

from dotenv import load_dotenv


# Configure logging before any other imports create loggers
def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


# Get logger for this module
logger = logging.getLogger(__name__)

from reasoning_oracle.config import OracleConfig
from reasoning_oracle.exceptions import BootError
from reasoning_oracle.oracle_node import ROLES, ReasoningOracleNode


async def main() -> None:
    """Main entry point for the Reasoning Oracle node.

    Raises:
        SystemExit: On configuration or boot errors
    """
    load_dotenv()

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Reasoning Oracle Node - bridge on-chain reasoning requests to an AI provider",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  RPC_URL             - JSON-RPC endpoint (BSC_RPC also accepted)
  CONTRACT_ADDRESS    - Reasoning oracle contract address
  ORACLE_WALLET_PK    - Signing key for fulfillments (worker role)
  INFERENCE_API_URL   - Chat-completions endpoint
  INFERENCE_API_KEY   - Provider API key (HODLAI_API_KEY also accepted)
  DATABASE_URL        - Store location (default: sqlite:///oracle.db)
  MAX_BLOCK_RANGE     - Widest log query per indexer tick (default: 2000)
  WORKER_COUNT        - Number of worker shards (default: 1)
  WORKER_INDEX        - This worker's shard index (default: 0)
  LOG_LEVEL           - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "--role",
        default="all",
        choices=ROLES,
        help="Which loops to run (default: all)"
    )
    parser.add_argument(
        "--worker-index",
        type=int,
        default=None,
        help="Override WORKER_INDEX"
    )
    parser.add_argument(
        "--worker-count",
        type=int,
        default=None,
        help="Override WORKER_COUNT"
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    args: argparse.Namespace = parser.parse_args()

    setup_logging(args.log_level)
    logger.info(f"=== Reasoning Oracle Starting (role={args.role}) ===")

    try:
        config = OracleConfig.from_env(require_signer=args.role != "indexer")
        if args.worker_index is not None or args.worker_count is not None:
            config = config.with_shard(
                worker_index=args.worker_index if args.worker_index is not None else config.scheduling.worker_index,
                worker_count=args.worker_count if args.worker_count is not None else config.scheduling.worker_count,
            )
        config.log_config()
        node = ReasoningOracleNode(config, role=args.role)
    except ValueError as e:
        logger.error(f"Configuration Error: {e}")
        logger.error("Please check your environment variables:")
        logger.error("  - CONTRACT_ADDRESS: Reasoning oracle contract address")
        logger.error("  - RPC_URL: JSON-RPC endpoint")
        if args.role != "indexer":
            logger.error("  - ORACLE_WALLET_PK: Signing key for fulfillReason")
        sys.exit(1)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, node.stop)

    try:
        await node.run()
    except BootError as e:
        logger.error(f"Boot Error: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Fatal Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
