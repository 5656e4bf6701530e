# storefront/services/payment_orchestrators.py
import asyncio
import logging
import time
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, Optional
from ..config import Config
from ..models.errors import ErrorKind, ProviderError, failure
from ..models.order import PaymentMode
from ..models.payment import OutcomeStatus, PaymentOutcome
from ..services.nets_client import NetsQrClient
from ..services.paypal_client import PayPalClient
from ..utils.formatters import format_money, to_money
from ..utils.messages import Messages

# Card processor response shapes

def _first_capture(capture: Dict[str, Any]) -> Dict[str, Any]:
    units = capture.get("purchase_units") or [{}]
    captures = ((units[0] or {}).get("payments") or {}).get("captures") or [{}]
    return captures[0] or {}

def capture_completed(capture: Optional[Dict[str, Any]]) -> bool:
    """True when the capture body reports COMPLETED at the top level or on the first capture"""
    if not capture:
        return False
    return capture.get("status") == "COMPLETED" or _first_capture(capture).get("status") == "COMPLETED"

def capture_reference(capture: Dict[str, Any]) -> Optional[str]:
    """Capture id, falling back to the provider order id"""
    return _first_capture(capture).get("id") or capture.get("id")

# QR bank response shapes

def qr_request_data(raw: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """The QR payload when the bank accepted the request, else None"""
    data = ((raw or {}).get("result") or {}).get("data") or {}
    if (data.get("response_code") == "00" and data.get("txn_status") == 1
            and data.get("qr_code") and data.get("txn_retrieval_ref")):
        return data
    return None

def qr_status(raw: Optional[Dict[str, Any]], timed_out: bool) -> OutcomeStatus:
    """Success on code 00 / status 1; failure is only believed once the page timed out"""
    data = ((raw or {}).get("result") or {}).get("data")
    if not data:
        return OutcomeStatus.PENDING
    if str(data.get("response_code")) == "00" and data.get("txn_status") == 1:
        return OutcomeStatus.SETTLED
    if timed_out and (data.get("response_code") != "00" or data.get("txn_status") == 2):
        return OutcomeStatus.FAILED
    return OutcomeStatus.PENDING

class PaymentOrchestrator:
    """Drives one provider to a single PaymentOutcome"""
    mode: PaymentMode

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    async def initiate(self, target: Dict[str, Any], amount: Decimal) -> Dict[str, Any]:
        raise NotImplementedError

    async def confirm(self, handle: Dict[str, Any]) -> PaymentOutcome:
        raise NotImplementedError

    def _outcome(self, status: OutcomeStatus, **fields: Any) -> PaymentOutcome:
        return PaymentOutcome(status=status, mode=self.mode, **fields)

class CashOrchestrator(PaymentOrchestrator):
    """Pay on confirmation: settles without any provider round trip"""
    mode = PaymentMode.CASH

    async def initiate(self, target: Dict[str, Any], amount: Decimal) -> Dict[str, Any]:
        return {"success": True, "order_id": target["order_id"], "amount": format_money(amount)}

    async def confirm(self, handle: Dict[str, Any]) -> PaymentOutcome:
        return self._outcome(
            OutcomeStatus.SETTLED,
            provider_ref=f"CASH-{int(time.time() * 1000)}-{handle['order_id']}"
        )

class CardOrchestrator(PaymentOrchestrator):
    """Client-approved card order, captured server side"""
    mode = PaymentMode.CARD

    def __init__(self, client: Optional[PayPalClient] = None):
        super().__init__()
        self.client = client or PayPalClient()

    async def initiate(self, target: Dict[str, Any], amount: Decimal,
                       client_amount: Any = None) -> Dict[str, Any]:
        """Create the provider order for the server-side amount"""
        server_amount = format_money(amount)
        if to_money(amount) is None or to_money(amount) <= 0:
            return failure(ErrorKind.VALIDATION, Messages.INVALID_TOTAL)

        if client_amount not in (None, ""):
            claimed = to_money(client_amount)
            if claimed is None or format_money(claimed) != server_amount:
                self.logger.warning(
                    f"Amount mismatch for {target.get('reference')}: client {client_amount!r}, "
                    f"server {server_amount}; using server amount"
                )

        try:
            provider_order_id = await self.client.create_order(
                server_amount,
                target.get("currency") or Config.CURRENCY,
                target.get("reference") or ""
            )
        except ProviderError as e:
            self.logger.error(f"Card order creation failed for {target.get('reference')}: {e} {e.raw}")
            return failure(ErrorKind.PROVIDER, Messages.PROVIDER_UNAVAILABLE, raw=e.raw)

        return {"success": True, "provider_order_id": provider_order_id, "amount": server_amount}

    async def confirm(self, handle: Dict[str, Any]) -> PaymentOutcome:
        """Capture and inspect the result"""
        provider_order_id = handle["provider_order_id"]
        try:
            capture = await self.client.capture_order(provider_order_id)
        except ProviderError as e:
            self.logger.error(f"Card capture failed for {provider_order_id}: {e} {e.raw}")
            return self._outcome(
                OutcomeStatus.FAILED,
                provider_order_id=provider_order_id,
                raw=e.raw if isinstance(e.raw, dict) else None,
                error=str(e)
            )

        if not capture_completed(capture):
            self.logger.warning(f"Card capture for {provider_order_id} not completed: {capture.get('status')}")
            return self._outcome(
                OutcomeStatus.FAILED,
                provider_order_id=provider_order_id,
                raw=capture,
                error=Messages.PAYMENT_NOT_COMPLETED
            )

        return self._outcome(
            OutcomeStatus.SETTLED,
            provider_ref=capture_reference(capture) or provider_order_id,
            provider_order_id=provider_order_id,
            raw=capture
        )

class QrOrchestrator(PaymentOrchestrator):
    """QR code shown to the payer, status polled until an outcome"""
    mode = PaymentMode.QR

    def __init__(self, client: Optional[NetsQrClient] = None,
                 poll_interval: Optional[float] = None, max_polls: Optional[int] = None):
        super().__init__()
        self.client = client or NetsQrClient()
        self.poll_interval = Config.QR_POLL_INTERVAL if poll_interval is None else poll_interval
        self.max_polls = max_polls or Config.QR_MAX_POLLS

    async def initiate(self, target: Dict[str, Any], amount: Decimal) -> Dict[str, Any]:
        """Request the QR code"""
        amount_text = format_money(amount)
        try:
            raw = await self.client.request_qr(amount_text)
        except ProviderError as e:
            self.logger.error(f"QR request failed for {target}: {e} {e.raw}")
            return failure(ErrorKind.PROVIDER, Messages.PROVIDER_UNAVAILABLE, raw=e.raw)

        data = qr_request_data(raw)
        if not data:
            self.logger.error(f"QR request rejected for {target}: {raw}")
            return failure(ErrorKind.PROVIDER, Messages.PROVIDER_UNAVAILABLE, raw=raw)

        return {
            "success": True,
            "txn_ref": data["txn_retrieval_ref"],
            "qr_code_url": f"data:image/png;base64,{data['qr_code']}",
            "amount": amount_text,
            "timer": int(self.poll_interval * self.max_polls),
            "raw": raw
        }

    async def confirm(self, handle: Dict[str, Any]) -> PaymentOutcome:
        """One status query"""
        txn_ref = handle["txn_ref"]
        timed_out = bool(handle.get("timed_out"))
        try:
            raw = await self.client.query_status(txn_ref, timed_out)
        except ProviderError as e:
            return self._outcome(OutcomeStatus.FAILED, provider_ref=txn_ref, error=str(e))
        return self._outcome(qr_status(raw, timed_out), provider_ref=txn_ref, raw=raw)

    async def stream_status(self, txn_ref: str, timed_out: bool = False) -> AsyncIterator[Dict[str, Any]]:
        """Poll on a fixed interval and yield every raw response, then one terminal event.

        Terminal events are {"success": True}, {"fail": True, ...} or
        {"error": ...}. Cancelling the consumer's task stops the loop.
        """
        polls = 0
        self.logger.info(f"QR status stream opened for {txn_ref}")
        try:
            while True:
                await asyncio.sleep(self.poll_interval)
                polls += 1

                try:
                    raw = await self.client.query_status(txn_ref, timed_out)
                except ProviderError as e:
                    self.logger.error(f"QR status query for {txn_ref} failed: {e}")
                    yield {"error": str(e)}
                    return

                yield raw

                status = qr_status(raw, timed_out)
                if status == OutcomeStatus.SETTLED:
                    self.logger.info(f"QR payment {txn_ref} settled after {polls} poll(s)")
                    yield {"success": True}
                    return
                if status == OutcomeStatus.FAILED:
                    self.logger.info(f"QR payment {txn_ref} failed after {polls} poll(s)")
                    yield {"fail": True, **(raw.get("result") or {}).get("data", {})}
                    return

                if polls >= self.max_polls:
                    self.logger.info(f"QR status stream for {txn_ref} timed out after {polls} poll(s)")
                    yield {"fail": True, "error": "Timeout"}
                    return
        except asyncio.CancelledError:
            self.logger.info(f"QR status stream for {txn_ref} cancelled after {polls} poll(s)")
            raise

class WalletOrchestrator(PaymentOrchestrator):
    """Synchronous debit of the stored-value wallet"""
    mode = PaymentMode.WALLET

    def __init__(self, wallet_service):
        super().__init__()
        self.wallet_service = wallet_service

    async def initiate(self, target: Dict[str, Any], amount: Decimal) -> Dict[str, Any]:
        return {
            "success": True,
            "order_id": target["order_id"],
            "user_id": target["user_id"],
            "amount": amount
        }

    async def confirm(self, handle: Dict[str, Any]) -> PaymentOutcome:
        result = await self.wallet_service.debit_for_order(
            handle["user_id"], handle["order_id"], handle["amount"]
        )
        if result["success"]:
            return self._outcome(OutcomeStatus.SETTLED, provider_ref=result["transaction_ref"], raw=result)
        return self._outcome(OutcomeStatus.FAILED, raw=result, error=result.get("message"))
