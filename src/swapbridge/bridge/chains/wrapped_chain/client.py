"""
Wrapped-asset chain executor client.

The executor is the service that signs and broadcasts contract messages on
the wrapped-asset chain. The bridge authenticates to it with the signer key
held in the secret handle.
"""

import asyncio
from typing import Any, Dict, Optional

import aiohttp

from ....config import WRAPPED_SIGNER_KEY, SecretHandle, WrappedChainConfig
from ....errors import ChainUnavailableError, CircuitBreaker, RpcError
from ....logging import get_logger

logger = get_logger(__name__)


class WrappedChainClient:
    """Async HTTP client for the wrapped-chain executor."""

    def __init__(
        self,
        config: WrappedChainConfig,
        secret_handle: SecretHandle,
        session: Optional[aiohttp.ClientSession] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.config = config
        self.secret_handle = secret_handle
        self.session = session
        self._owns_session = session is None
        self.circuit_breaker = circuit_breaker or CircuitBreaker(name="wrapped_chain")

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession()
            self._owns_session = True
        return self.session

    async def _make_request(
        self, method: str, path: str, body: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """Send one request; 404 answers come back as None."""
        url = f"{self.config.executor_url.rstrip('/')}{path}"

        async def send() -> Optional[Dict[str, Any]]:
            session = await self._get_session()
            with self.secret_handle.acquire(WRAPPED_SIGNER_KEY) as signer_key:
                headers = {"Authorization": f"Bearer {signer_key}"}
            try:
                async with session.request(
                    method,
                    url,
                    json=body,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.config.request_timeout),
                ) as response:
                    if response.status == 404:
                        return None
                    if response.status >= 500 or response.status == 429:
                        raise ChainUnavailableError(
                            f"HTTP error: {response.status}", endpoint=url, status_code=response.status
                        )
                    if response.status != 200:
                        text = await response.text()
                        raise RpcError(f"Executor rejected request ({response.status}): {text}", method=path)
                    return await response.json(content_type=None)
            except asyncio.TimeoutError:
                raise ChainUnavailableError(f"Request {path} timed out", endpoint=url, timed_out=True)
            except aiohttp.ClientError as e:
                raise ChainUnavailableError(f"Request {path} failed: {e}", endpoint=url, cause=e)

        return await self.circuit_breaker.call(send)

    async def execute(self, msg: Dict[str, Any]) -> Dict[str, Any]:
        """Execute a message on the bridge contract.

        Returns ``{"tx_hash", "code", "raw_log"}``; a non-zero code means the
        contract rejected the message.
        """
        result = await self._make_request(
            "POST",
            "/execute",
            {
                "contract": self.config.bridge_contract_address,
                "chain_id": self.config.chain_id,
                "msg": msg,
            },
        )
        if result is None:
            raise RpcError("Executor has no /execute endpoint", method="/execute")
        return {
            "tx_hash": result.get("tx_hash"),
            "code": int(result.get("code", 0)),
            "raw_log": result.get("raw_log", ""),
        }

    async def get_tx(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Look up a transaction, None while the chain does not know it."""
        result = await self._make_request("GET", f"/txs/{tx_hash}")
        if result is None:
            return None
        return {
            "tx_hash": result.get("tx_hash", tx_hash),
            "height": int(result.get("height") or 0),
            "code": int(result.get("code", 0)),
            "raw_log": result.get("raw_log", ""),
        }

    async def proof_processed(self, tx_id: str) -> Dict[str, Any]:
        """Ask whether the bridge contract already stored a proof for ``tx_id``.

        Returns ``{"processed": bool, "tx_hash": str | None}``.
        """
        result = await self._make_request(
            "POST",
            "/query",
            {
                "contract": self.config.bridge_contract_address,
                "msg": {"proof_processed": {"tx_id": tx_id}},
            },
        )
        result = result or {}
        return {"processed": bool(result.get("processed")), "tx_hash": result.get("tx_hash")}

    async def swap_details(
        self, address: str, viewing_key: str, nonce: int
    ) -> Optional[Dict[str, Any]]:
        """Read the burn the bridge contract stored under ``nonce`` for ``address``.

        Returns ``{"destination", "sender", "amount"}``, or None when the
        contract has no such burn. A viewing key the contract refuses raises
        RpcError.
        """
        result = await self._make_request(
            "POST",
            "/query",
            {
                "contract": self.config.bridge_contract_address,
                "msg": {
                    "swap_details": {"address": address, "viewing_key": viewing_key, "nonce": nonce}
                },
            },
        )
        if result is None:
            return None
        if "viewing_key_error" in result:
            raise RpcError(
                f"Viewing key refused: {result['viewing_key_error'].get('msg', '')}",
                method="swap_details",
            )
        details = result.get("swap_details", result)
        return {
            "destination": details["to_monero_address"],
            "sender": details["from_secret_address"],
            "amount": int(details["amount"]),
        }

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self.session is not None and self._owns_session and not self.session.closed:
            await self.session.close()
        self.session = None
