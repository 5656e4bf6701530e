# storefront/services/nets_client.py
import asyncio
import logging
from typing import Any, Dict, Optional
import aiohttp
from ..config import Config
from ..models.errors import ProviderError

class NetsQrClient:
    """QR bank client: request a payment QR, then query its status"""

    def __init__(self, api_key: Optional[str] = None, project_id: Optional[str] = None,
                 request_url: Optional[str] = None, query_url: Optional[str] = None,
                 txn_id: Optional[str] = None, timeout: Optional[float] = None):
        self.api_key = api_key if api_key is not None else Config.NETS_API_KEY
        self.project_id = project_id if project_id is not None else Config.NETS_PROJECT_ID
        self.request_url = request_url or Config.NETS_REQUEST_URL
        self.query_url = query_url or Config.NETS_QUERY_URL
        self.txn_id = txn_id or Config.NETS_TXN_ID
        self.timeout = aiohttp.ClientTimeout(total=timeout or Config.PROVIDER_TIMEOUT)
        self.logger = logging.getLogger(__name__)

    async def request_qr(self, amount: str) -> Dict[str, Any]:
        """Ask for a QR code for `amount` dollars; returns the raw body"""
        return await self._post(self.request_url, {
            "txn_id": self.txn_id,
            "amt_in_dollars": str(amount),
            "notify_mobile": 0
        }, "NETS QR request failed")

    async def query_status(self, txn_ref: str, timed_out: bool = False) -> Dict[str, Any]:
        """Query a QR transaction; `timed_out` tells the bank the page gave up"""
        return await self._post(self.query_url, {
            "txn_retrieval_ref": txn_ref,
            "frontend_timeout_status": 1 if timed_out else 0
        }, "NETS QR query failed")

    async def _post(self, url: str, payload: Dict[str, Any], error: str) -> Dict[str, Any]:
        if not self.api_key or not self.project_id:
            raise ProviderError("Missing NETS credentials: NETS_API_KEY / NETS_PROJECT_ID")

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(
                    url,
                    json=payload,
                    headers={
                        "api-key": self.api_key,
                        "project-id": self.project_id,
                        "Content-Type": "application/json"
                    }
                ) as response:
                    try:
                        data = await response.json(content_type=None)
                    except ValueError:
                        data = {}
                    if response.status != 200:
                        raise ProviderError(error, raw=data, status=response.status)
                    return data if isinstance(data, dict) else {}
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderError(f"{error}: {e}") from e
