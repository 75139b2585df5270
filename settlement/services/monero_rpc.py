import httpx
import json
import logging
from typing import Optional, Dict, Any, List, Iterable

from pydantic import ValidationError

from settlement.errors import ConfigurationError, RpcError
from settlement.schemas import IncomingTransfer
from config import settings

logger = logging.getLogger(__name__)

class MoneroRpcClient:
    """
    Thin JSON-RPC 2.0 client for monero-wallet-rpc.

    Every call is bounded by a fixed timeout and never retried here;
    the watcher simply tries again on its next cycle.
    """

    def __init__(
        self,
        url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        if not url or not url.strip():
            raise ConfigurationError("MONERO_RPC_URL is not set")
        self.url = url.strip()
        self.timeout = timeout
        self.auth = httpx.BasicAuth(username or "", password or "") if (username or password) else None
        self.headers = {'Content-Type': 'application/json'}
        self._transport = transport

    @classmethod
    def from_settings(cls) -> "MoneroRpcClient":
        """Build a client from environment configuration"""
        return cls(
            url=settings.MONERO_RPC_URL,
            username=settings.MONERO_RPC_USER,
            password=settings.MONERO_RPC_PASS,
            timeout=settings.MONERO_RPC_TIMEOUT_SECONDS
        )

    async def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Issue one JSON-RPC call and return its `result` member"""

        payload = {
            'jsonrpc': '2.0',
            'id': '0',
            'method': method,
            'params': params or {}
        }

        async with httpx.AsyncClient(transport=self._transport) as client:
            try:
                response = await client.post(
                    self.url,
                    headers=self.headers,
                    json=payload,
                    auth=self.auth,
                    timeout=self.timeout
                )
                response.raise_for_status()
                data = response.json()
            except httpx.TimeoutException as e:
                raise RpcError(method, f"timed out after {self.timeout}s ({e.__class__.__name__})")
            except httpx.HTTPStatusError as e:
                raise RpcError(method, f"HTTP {e.response.status_code}", code=e.response.status_code)
            except httpx.HTTPError as e:
                raise RpcError(method, f"transport error: {str(e) or e.__class__.__name__}")
            except (json.JSONDecodeError, ValueError):
                raise RpcError(method, "invalid JSON in response")

        if not isinstance(data, dict):
            raise RpcError(method, "unexpected response shape")

        error = data.get('error')
        if error:
            if isinstance(error, dict):
                raise RpcError(method, str(error.get('message', 'unknown error')), code=error.get('code'))
            raise RpcError(method, str(error))

        return data.get('result')

    async def get_height(self) -> int:
        """Current wallet-synced block height"""
        result = await self.call('get_height')
        try:
            return int((result or {}).get('height', 0))
        except (TypeError, ValueError, AttributeError):
            raise RpcError('get_height', f"unexpected result: {result!r}")

    async def get_transfers(
        self,
        account_index: int = 0,
        subaddr_indices: Optional[Iterable[int]] = None,
        include_pool: bool = True
    ) -> List[IncomingTransfer]:
        """Incoming transfers for an account, optionally restricted to subaddresses"""

        params: Dict[str, Any] = {
            'in': True,
            'account_index': account_index,
        }
        if subaddr_indices is not None:
            params['subaddr_indices'] = list(subaddr_indices)
        if include_pool:
            params['pool'] = True

        result = await self.call('get_transfers', params) or {}
        if not isinstance(result, dict):
            raise RpcError('get_transfers', f"unexpected result: {result!r}")

        transfers = []
        for key in ('in', 'pool'):
            for entry in result.get(key) or []:
                try:
                    transfers.append(IncomingTransfer.model_validate(entry))
                except ValidationError as e:
                    logger.warning(f"Skipping malformed {key} transfer from wallet: {e.error_count()} validation errors")
        return transfers
