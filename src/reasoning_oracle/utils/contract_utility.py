import json
from pathlib import Path

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.middleware import SignAndSendRawMiddlewareBuilder


class ContractUtility:
    """
    Utility for contract interaction and ABI loading.

    Can be used in two modes:
    1. Signing mode: initialize with an RPC URL and a private key so that
       ``transact`` calls are signed locally and sent as raw transactions
    2. Read-only mode: initialize without a key to only read chain state
    """

    def __init__(self, rpc_url: str = "", secret: str | None = None):
        """
        Initialize the ContractUtility.

        Args:
            rpc_url: HTTP RPC endpoint (optional for ABI-only use)
            secret: Private key for transactions (optional)
        """
        self.rpc_url = rpc_url
        self.account: LocalAccount | None = None
        self.w3: AsyncWeb3 | None = None
        if rpc_url:
            self.w3 = self.setup_web3_middleware(secret)

    def setup_web3_middleware(self, secret: str | None) -> AsyncWeb3:
        # AsyncHTTPProvider sends batch_requests() as a single JSON-RPC array
        w3 = AsyncWeb3(AsyncHTTPProvider(self.rpc_url))
        if secret:
            self.account = Account.from_key(secret)
            w3.middleware_onion.inject(SignAndSendRawMiddlewareBuilder.build(self.account), layer=0)
            w3.eth.default_account = self.account.address
        return w3

    @staticmethod
    def get_contract_abi(contract_name: str) -> list:
        """Fetches ABI of the given contract from the contracts folder"""
        contract_path = (
            Path(__file__).parent.parent
            / "contracts"
            / f"{contract_name}.json"
        ).resolve()

        with contract_path.open() as file:
            contract_data = json.load(file)

        return contract_data["abi"]
