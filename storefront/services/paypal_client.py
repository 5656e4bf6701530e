# storefront/services/paypal_client.py
import asyncio
import logging
from typing import Any, Dict, Optional
import aiohttp
from ..config import Config
from ..models.errors import ProviderError

class PayPalClient:
    """Card processor REST client: create an order, later capture it"""

    def __init__(self, api_base: Optional[str] = None, client_id: Optional[str] = None,
                 client_secret: Optional[str] = None, timeout: Optional[float] = None):
        self.api_base = (api_base or Config.PAYPAL_API).rstrip("/")
        self.client_id = client_id if client_id is not None else Config.PAYPAL_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else Config.PAYPAL_CLIENT_SECRET
        self.timeout = aiohttp.ClientTimeout(total=timeout or Config.PROVIDER_TIMEOUT)
        self.logger = logging.getLogger(__name__)

    async def get_access_token(self, session: aiohttp.ClientSession) -> str:
        """OAuth client-credentials token"""
        async with session.post(
            f"{self.api_base}/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=aiohttp.BasicAuth(self.client_id, self.client_secret)
        ) as response:
            data = await self._read_json(response)
            if response.status != 200 or not data.get("access_token"):
                raise ProviderError("PayPal token fetch failed", raw=data, status=response.status)
            return data["access_token"]

    async def create_order(self, amount: str, currency: str, reference: str = "") -> str:
        """Create a CAPTURE-intent order and return the provider order id.

        Only the final amount is sent. An item breakdown has to match the
        amount to the cent or the hosted checkout stalls.
        """
        if not amount:
            raise ProviderError("Missing amount for PayPal order creation")

        purchase_unit = {
            "amount": {
                "currency_code": currency,
                "value": str(amount)
            }
        }
        if reference:
            purchase_unit["reference_id"] = str(reference)

        payload = {
            "intent": "CAPTURE",
            "purchase_units": [purchase_unit]
        }

        data = await self._call("/v2/checkout/orders", payload, "PayPal create order failed")
        if not data.get("id"):
            raise ProviderError("PayPal create order returned no id", raw=data)

        self.logger.info(
            f"PayPal order {data['id']} created for {amount} {currency} ({reference})"
        )
        return data["id"]

    async def capture_order(self, provider_order_id: str) -> Dict[str, Any]:
        """Capture a previously approved order; returns the raw capture body"""
        if not provider_order_id:
            raise ProviderError("Missing provider order id for capture")
        return await self._call(
            f"/v2/checkout/orders/{provider_order_id}/capture", None, "PayPal capture failed"
        )

    async def _call(self, path: str, payload: Optional[Dict[str, Any]], error: str) -> Dict[str, Any]:
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                token = await self.get_access_token(session)
                async with session.post(
                    f"{self.api_base}{path}",
                    json=payload,
                    headers={
                        "Content-Type": "application/json",
                        "Authorization": f"Bearer {token}"
                    }
                ) as response:
                    data = await self._read_json(response)
                    if response.status >= 400:
                        raise ProviderError(error, raw=data, status=response.status)
                    return data
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderError(f"{error}: {e}") from e

    @staticmethod
    async def _read_json(response: aiohttp.ClientResponse) -> Dict[str, Any]:
        try:
            data = await response.json(content_type=None)
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
