"""
tally.services.fulfillment — Airtime / Data Fulfillment Gateway
================================================================

Thin synchronous client for the Flutterwave bills API.  The redemption
service calls :meth:`FlutterwaveGateway.purchase` *after* the points
debit has committed, so nothing here ever touches the ledger.

A provider failure is reported as :class:`FulfillmentError`.  The caller
decides what that means for the redemption row.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from decimal import Decimal

import httpx

logger = logging.getLogger(__name__)

FLUTTERWAVE_BASE_URL = "https://api.flutterwave.com/v3"


class FulfillmentError(Exception):
    """The provider rejected the purchase or could not be reached."""


@dataclass(frozen=True, slots=True)
class FulfillmentRequest:
    reference: str
    phone_number: str
    carrier: str
    product_type: str
    amount: Decimal


@dataclass(frozen=True, slots=True)
class FulfillmentResult:
    provider_reference: str
    raw: dict


class FlutterwaveGateway:
    """Buys airtime or data bundles through ``POST /bills``."""

    def __init__(
        self,
        secret_key: str,
        *,
        base_url: str = FLUTTERWAVE_BASE_URL,
        timeout: float = 10,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._secret_key = secret_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_env(cls) -> FlutterwaveGateway:
        """Build a gateway from ``FLUTTERWAVE_SECRET_KEY`` / ``FLUTTERWAVE_BASE_URL``.

        Raises
        ------
        RuntimeError
            If ``FLUTTERWAVE_SECRET_KEY`` is not set.
        """
        secret = os.getenv("FLUTTERWAVE_SECRET_KEY", "")
        if not secret:
            raise RuntimeError(
                "FLUTTERWAVE_SECRET_KEY is not set.  "
                "Redemptions cannot be fulfilled without it."
            )
        return cls(secret, base_url=os.getenv("FLUTTERWAVE_BASE_URL", FLUTTERWAVE_BASE_URL))

    def _payload(self, request: FulfillmentRequest) -> dict:
        payload = {
            "country": "NG",
            "customer": request.phone_number,
            "amount": float(request.amount),
            "recurrence": "ONCE",
            "reference": request.reference,
        }
        if request.product_type == "airtime":
            payload["type"] = "AIRTIME"
        else:
            payload["type"] = f"{request.carrier.upper()} DATA"
        return payload

    def purchase(self, request: FulfillmentRequest) -> FulfillmentResult:
        """Submit one purchase.  Raises :class:`FulfillmentError` on any failure."""
        headers = {"Authorization": f"Bearer {self._secret_key}"}
        try:
            transport = self._transport or httpx.HTTPTransport(retries=1)
            with httpx.Client(timeout=self._timeout, transport=transport) as client:
                resp = client.post(
                    f"{self._base_url}/bills",
                    json=self._payload(request),
                    headers=headers,
                )
        except httpx.HTTPError as exc:
            raise FulfillmentError(f"Fulfillment provider unreachable: {exc}") from exc

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            raise FulfillmentError(
                f"Fulfillment provider sent an unexpected body (HTTP {resp.status_code})"
            )

        if resp.status_code != 200 or body.get("status") != "success":
            message = body.get("message") or f"HTTP {resp.status_code}"
            raise FulfillmentError(f"Fulfillment provider rejected purchase: {message}")

        data = body.get("data") or {}
        provider_ref = data.get("flw_ref") or data.get("reference") or request.reference
        logger.info(
            "Fulfilled %s %s for %s (ref %s → %s)",
            request.product_type, request.amount, request.phone_number,
            request.reference, provider_ref,
        )
        return FulfillmentResult(provider_reference=provider_ref, raw=data)
