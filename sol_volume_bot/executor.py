"""
Swap Executor Adapter
=====================
Boundary to the external swap service. The trading core only ever calls
swap(); everything about building, signing, sending and confirming the
transaction lives here.

Implementations:
- SolanaTrackerExecutor: Solana Tracker swap API + Solana RPC (+ optional Jito bundle)
- DryRunExecutor: synthetic signatures, no network
"""

import uuid
import base64
import random
import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import requests
from tenacity import AsyncRetrying, stop_after_attempt, wait_fixed, retry_if_exception_type
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.types import TxOpts
from solders.pubkey import Pubkey
from solders.system_program import transfer, TransferParams
from solders.transaction import Transaction, VersionedTransaction

from .config import Config, DEFAULT_SWAP_API_URL
from .wallet import WalletIdentity
from .utils import (
    SwapError,
    RateLimitedError,
    TransactionExpiredError,
    get_logger,
    format_address,
)

logger = get_logger(__name__)

# Sell legs swap the wallet's whole token balance
AUTO_AMOUNT = "auto"

LAMPORTS_PER_SOL = 1_000_000_000

JITO_BUNDLE_URL = "https://mainnet.block-engine.jito.wtf/api/v1/bundles"
JITO_TIP_ACCOUNTS = [
    "96gYZGLnJYVFmbjzopPSU6QiEV5fGqZNyN9nmNhvrZU5",
    "HFqU5x63VTqvQss8hp11i4bVmkdzGTbQrWMT7wekGuLt",
    "Cw8CFyM9FkoMi7K7Crf6HNQqf4uEMzpKw6QNghXLvLkY",
    "ADaUMid9yfUytqMBgopwjb2DTLSokTSzL1zt6iGPaS49",
    "DfXygSm4jCyNCybVYYK6DwvWqjKee8pbDmJGcLWNDXjh",
    "ADuUkR4vqLUMWXxW9gh6D6L8pMSawimctcNZ5pGwDcEt",
    "DttWaMuVvTiduZRnguLF7jNxTgiMBZ1hyAumKUiL2KRL",
    "3AVi9Tg9Uo68tJfuvoKvqKNWKkC5wPdSSdeBnizKZ6jT",
]

Amount = Union[float, str]


@dataclass(frozen=True)
class SwapOptions:
    """Send/confirm settings passed with every swap."""
    skip_preflight: bool = True
    confirmation_retries: int = 30
    last_valid_block_height_buffer: int = 150
    resend_interval: float = 1.0
    confirmation_check_interval: float = 1.0
    commitment: str = "processed"
    jito_enabled: bool = False
    jito_tip: float = 0.0001

    @classmethod
    def from_config(cls, config: Config) -> "SwapOptions":
        return cls(jito_enabled=config.use_jito, jito_tip=config.jito_tip)


class _Unconfirmed(Exception):
    """Signature not seen yet; confirmation should poll again."""


class SolanaTrackerExecutor:
    """
    Executes swaps through the Solana Tracker swap API.

    Flow per swap:
    1. GET /swap for a serialized v0 transaction (HTTP 429 -> RateLimitedError)
    2. Sign it with the leased wallet's keypair
    3. Send raw with skip-preflight, or as a Jito bundle with a tip transfer
    4. Poll the signature status, resending while unconfirmed, until the
       block height passes last_valid_block_height - buffer
       (-> TransactionExpiredError)
    """

    def __init__(
        self,
        rpc_url: str,
        api_url: str = DEFAULT_SWAP_API_URL,
        api_key: Optional[str] = None,
        http_timeout: float = 30.0,
        jito_url: str = JITO_BUNDLE_URL,
        session: Optional[requests.Session] = None,
        client: Optional[AsyncClient] = None,
    ):
        self.rpc_url = rpc_url
        self.api_url = api_url.rstrip("/")
        self.http_timeout = http_timeout
        self.jito_url = jito_url
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if api_key:
            self.session.headers["x-api-key"] = api_key
        self._client = client

    def _get_client(self) -> AsyncClient:
        """Get or create RPC client."""
        if self._client is None:
            self._client = AsyncClient(self.rpc_url)
        return self._client

    async def close(self):
        """Close RPC client and HTTP session."""
        if self._client is not None:
            await self._client.close()
            self._client = None
        self.session.close()

    @staticmethod
    def _raise_for_response(response: requests.Response, what: str):
        if response.status_code == 429:
            raise RateLimitedError(f"{what} rate limited (429): {response.text[:200]}")
        if response.status_code != 200:
            raise SwapError(f"{what} error {response.status_code}: {response.text[:300]}")

    def _get_swap_transaction(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Fetch the unsigned swap transaction (blocking; run in a thread)."""
        response = self.session.get(
            f"{self.api_url}/swap",
            params=params,
            timeout=self.http_timeout
        )
        self._raise_for_response(response, "Swap API")

        data = response.json()
        if not data.get("txn"):
            raise SwapError(f"Swap API returned no transaction: {data.get('error', data)}")
        return data

    def _post_bundle(self, transactions: List[bytes]) -> str:
        """Submit a Jito bundle (blocking; run in a thread)."""
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "sendBundle",
            "params": [
                [base64.b64encode(tx).decode() for tx in transactions],
                {"encoding": "base64"},
            ],
        }
        response = self.session.post(self.jito_url, json=payload, timeout=self.http_timeout)
        self._raise_for_response(response, "Jito block engine")

        data = response.json()
        if "error" in data:
            raise SwapError(f"Jito bundle rejected: {data['error']}")
        return data.get("result", "")

    @staticmethod
    def _tx_opts(options: SwapOptions) -> TxOpts:
        return TxOpts(
            skip_preflight=options.skip_preflight,
            preflight_commitment=Commitment(options.commitment),
            max_retries=0,
        )

    def _tip_transaction(self, wallet: WalletIdentity, signed: VersionedTransaction,
                         options: SwapOptions) -> Transaction:
        """Build the tip transfer that rides in the same bundle as the swap."""
        ix = transfer(TransferParams(
            from_pubkey=wallet.keypair.pubkey(),
            to_pubkey=Pubkey.from_string(random.choice(JITO_TIP_ACCOUNTS)),
            lamports=int(options.jito_tip * LAMPORTS_PER_SOL),
        ))
        return Transaction.new_signed_with_payer(
            [ix],
            wallet.keypair.pubkey(),
            [wallet.keypair],
            signed.message.recent_blockhash,
        )

    async def _send(self, wallet: WalletIdentity, signed: VersionedTransaction, options: SwapOptions):
        client = self._get_client()
        if options.jito_enabled:
            tip_tx = self._tip_transaction(wallet, signed, options)
            bundle_id = await asyncio.to_thread(self._post_bundle, [bytes(signed), bytes(tip_tx)])
            logger.debug(f"Jito bundle {bundle_id} submitted for {format_address(wallet.address)}")
        else:
            await client.send_raw_transaction(bytes(signed), opts=self._tx_opts(options))

    async def _check_confirmation(self, signed: VersionedTransaction, expiry_height: int,
                                  options: SwapOptions) -> bool:
        """True once the signature has landed; raises if it failed or expired."""
        client = self._get_client()
        signature = signed.signatures[0]

        statuses = await client.get_signature_statuses([signature])
        status = statuses.value[0]
        if status is not None:
            if status.err is not None:
                raise SwapError(f"Transaction {signature} failed on-chain: {status.err}")
            return True

        height = (await client.get_block_height(Commitment(options.commitment))).value
        if height > expiry_height:
            raise TransactionExpiredError(
                f"Transaction {signature} expired: block height {height} passed {expiry_height}"
            )
        return False

    async def _confirm(self, signed: VersionedTransaction, expiry_height: int,
                       options: SwapOptions) -> str:
        signature = signed.signatures[0]
        client = self._get_client()
        loop = asyncio.get_running_loop()
        last_sent = loop.time()

        retrying = AsyncRetrying(
            stop=stop_after_attempt(options.confirmation_retries),
            wait=wait_fixed(options.confirmation_check_interval),
            retry=retry_if_exception_type(_Unconfirmed),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    if await self._check_confirmation(signed, expiry_height, options):
                        break
                    # Resend until it lands; the cluster drops duplicates of a landed signature
                    if loop.time() - last_sent >= options.resend_interval:
                        await client.send_raw_transaction(bytes(signed), opts=self._tx_opts(options))
                        last_sent = loop.time()
                    raise _Unconfirmed(str(signature))
        except _Unconfirmed:
            raise TransactionExpiredError(
                f"Transaction {signature} expired: not confirmed after "
                f"{options.confirmation_retries} checks"
            )
        return str(signature)

    async def swap(
        self,
        from_asset: str,
        to_asset: str,
        amount: Amount,
        slippage: float,
        wallet: WalletIdentity,
        priority_fee: float,
        options: SwapOptions,
    ) -> str:
        """
        Swap from_asset into to_asset for the given wallet.

        Args:
            amount: SOL/token quantity, or AUTO_AMOUNT for the full balance

        Returns:
            Transaction signature (base58)

        Raises:
            RateLimitedError, TransactionExpiredError, SwapError
        """
        params = {
            "from": from_asset,
            "to": to_asset,
            "fromAmount": amount,
            "slippage": slippage,
            "payer": wallet.address,
            "priorityFee": priority_fee,
            "txVersion": "v0",
        }
        quote = await asyncio.to_thread(self._get_swap_transaction, params)

        try:
            raw = VersionedTransaction.from_bytes(base64.b64decode(quote["txn"]))
            signed = VersionedTransaction(raw.message, [wallet.keypair])
        except ValueError as e:
            raise SwapError(f"Could not sign swap transaction: {e}")

        client = self._get_client()
        latest = await client.get_latest_blockhash(Commitment(options.commitment))
        expiry_height = latest.value.last_valid_block_height - options.last_valid_block_height_buffer

        await self._send(wallet, signed, options)
        return await self._confirm(signed, expiry_height, options)


@dataclass
class DryRunExecutor:
    """Pretends every swap lands; records what would have been sent."""
    latency: float = 0.0
    calls: List[Dict[str, Any]] = field(default_factory=list)

    async def swap(
        self,
        from_asset: str,
        to_asset: str,
        amount: Amount,
        slippage: float,
        wallet: WalletIdentity,
        priority_fee: float,
        options: SwapOptions,
    ) -> str:
        if self.latency:
            await asyncio.sleep(self.latency)
        self.calls.append({
            "from": from_asset,
            "to": to_asset,
            "amount": amount,
            "wallet": wallet.address,
        })
        logger.info(f"[DRY RUN] Would swap {amount} {format_address(from_asset)} -> {format_address(to_asset)}")
        return f"DRYRUN{uuid.uuid4().hex}"

    async def close(self):
        pass


def create_executor(config: Config):
    """Pick the executor the configuration asks for."""
    if config.dry_run:
        logger.warning("[DRY RUN] No real transactions will be sent")
        return DryRunExecutor()
    return SolanaTrackerExecutor(
        rpc_url=config.rpc_url,
        api_url=config.swap_api_url,
        api_key=config.swap_api_key,
    )
