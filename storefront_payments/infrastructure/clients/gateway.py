"""Payment gateway HTTP client for creating transactions and reading their status"""

import logging
from typing import Any, Callable, Dict, Optional

import httpx

from storefront_payments.config import RuntimeConfig, settings
from storefront_payments.domain.exceptions import GatewayError
from storefront_payments.domain.models import GatewayTransaction
from storefront_payments.infrastructure.observability.metrics import (
    gateway_failure_counter,
    gateway_latency_histogram,
)

logger = logging.getLogger(__name__)


class GatewayClient:
    """
    Thin client for the external payment gateway.

    Merchant credentials and base URL come from ``config_provider`` on every
    call, so an operator rotating them takes effect on the next request.
    No retries and no caching: failures surface as ``GatewayError``.
    """

    def __init__(
        self,
        config_provider: Callable[[], RuntimeConfig],
        timeout: float | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config_provider = config_provider
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    def _headers(self, config: RuntimeConfig) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-MerchantId": config.merchant_id,
            "X-Secret": config.secret,
        }

    async def _request(self, operation: str, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        config = self.config_provider()
        url = f"{config.gateway_base_url}{path}"

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                with gateway_latency_histogram.labels(operation=operation).time():
                    response = await client.request(method, url, headers=self._headers(config), **kwargs)
            except httpx.TimeoutException as e:
                gateway_failure_counter.labels(operation=operation).inc()
                raise GatewayError(f"Payment gateway timeout after {self.timeout}s") from e
            except httpx.RequestError as e:
                gateway_failure_counter.labels(operation=operation).inc()
                raise GatewayError(f"Payment gateway unreachable: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.is_error:
            gateway_failure_counter.labels(operation=operation).inc()
            message = data.get("message") if isinstance(data, dict) else None
            logger.warning(
                "Gateway rejected request",
                extra={"operation": operation, "status_code": response.status_code},
            )
            raise GatewayError(
                message or f"Payment gateway error: {response.status_code}",
                status_code=response.status_code,
            )

        if not isinstance(data, dict):
            gateway_failure_counter.labels(operation=operation).inc()
            raise GatewayError("Invalid response from payment gateway", status_code=response.status_code)

        return data

    async def create_transaction(
        self,
        amount: int,
        currency: str,
        description: str,
        success_url: str,
        failed_url: str,
        payload: str,
        method: int,
    ) -> GatewayTransaction:
        """
        Create a transaction and obtain the payment form redirect.

        Raises:
            GatewayError: On timeout, HTTP errors, or a response without a transaction id
        """
        data = await self._request(
            "create",
            "POST",
            "/transaction/process",
            json={
                "paymentMethod": method,
                "paymentDetails": {"amount": amount, "currency": currency},
                "description": description,
                "return": success_url,
                "failedUrl": failed_url,
                "payload": payload,
            },
        )

        transaction_id = data.get("transactionId")
        if not transaction_id:
            gateway_failure_counter.labels(operation="create").inc()
            raise GatewayError("Payment gateway returned no transaction id")

        return GatewayTransaction(
            transaction_id=str(transaction_id),
            redirect=data.get("redirect") or data.get("payformSuccessUrl"),
            status=data.get("status"),
        )

    async def get_status(self, transaction_id: str) -> str:
        """
        Fetch the gateway-side status of a transaction.

        Raises:
            GatewayError: On timeout, HTTP errors, or a response without a status
        """
        data = await self._request("status", "GET", f"/transaction/{transaction_id}")
        status = data.get("status")
        if not status:
            gateway_failure_counter.labels(operation="status").inc()
            raise GatewayError("Payment gateway returned no status")
        return str(status)
