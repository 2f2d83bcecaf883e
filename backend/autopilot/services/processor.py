"""Payment processor collaborator: charge lookup, evidence submission, refunds."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Dict, Optional, Protocol

import stripe

from autopilot.config import get_settings
from autopilot.services.types import ChargeContext


logger = logging.getLogger(__name__)


class ProcessorError(RuntimeError):
    def __init__(self, message: str, *, status_code: Optional[int] = None, retryable: bool = False) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class WebhookSignatureError(ValueError):
    pass


class ProcessorClient(Protocol):
    async def get_charge(self, charge_id: str) -> ChargeContext:
        ...

    async def submit_evidence(self, dispute_id: str, payload: Dict[str, Any]) -> None:
        ...

    async def create_refund(self, charge_id: str, metadata: Dict[str, str]) -> str:
        ...


def classify_retryable_status(status_code: Optional[int]) -> bool:
    if status_code is None:
        return False
    return status_code == 429 or status_code >= 500


def processor_error_from(exc: stripe.StripeError) -> ProcessorError:
    status_code = getattr(exc, "http_status", None)
    message = getattr(exc, "user_message", None) or str(exc) or exc.__class__.__name__
    retryable = isinstance(exc, stripe.APIConnectionError) or classify_retryable_status(status_code)
    return ProcessorError(message, status_code=status_code, retryable=retryable)


class StripeProcessorClient:
    """Stripe SDK calls bound to one connected account's access token."""

    def __init__(self, api_key: Optional[str] = None) -> None:
        settings = get_settings()
        key = api_key or settings.stripe_secret_key
        if not key:
            raise ProcessorError("STRIPE_SECRET_KEY not configured")
        self._api_key = key
        self._api_version = settings.stripe_api_version

    def _options(self) -> Dict[str, Any]:
        return {"api_key": self._api_key, "stripe_version": self._api_version}

    async def _call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        # The SDK is blocking; keep the event loop free while it waits on the network.
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except stripe.StripeError as exc:
            raise processor_error_from(exc) from exc

    async def get_charge(self, charge_id: str) -> ChargeContext:
        charge = await self._call(stripe.Charge.retrieve, charge_id, **self._options())
        billing = charge.get("billing_details") or {}
        return ChargeContext(
            billing_email=str(billing.get("email") or ""),
            billing_name=str(billing.get("name") or ""),
            statement_descriptor=str(
                charge.get("calculated_statement_descriptor") or charge.get("statement_descriptor") or ""
            ),
        )

    async def submit_evidence(self, dispute_id: str, payload: Dict[str, Any]) -> None:
        await self._call(
            stripe.Dispute.modify,
            dispute_id,
            evidence=payload.get("evidence") or {},
            submit=bool(payload.get("submit")),
            **self._options(),
        )
        logger.info("Updated evidence for dispute %s (submit=%s)", dispute_id, bool(payload.get("submit")))

    async def create_refund(self, charge_id: str, metadata: Dict[str, str]) -> str:
        options = self._options()
        if metadata.get("dispute_id"):
            # One refund per dispute even if the request is replayed.
            options["idempotency_key"] = f"deflect-{metadata['dispute_id']}"
        refund = await self._call(stripe.Refund.create, charge=charge_id, metadata=metadata, **options)
        refund_id = str(refund.get("id") or "")
        if not refund_id:
            raise ProcessorError(f"Refund for charge {charge_id} returned no id")
        return refund_id


def construct_event(
    payload: bytes,
    signature_header: Optional[str],
    secret: str,
    tolerance_seconds: int = 300,
) -> Dict[str, Any]:
    """Verify a webhook delivery and return the decoded event object."""
    if not signature_header:
        raise WebhookSignatureError("Missing stripe-signature")
    if not secret:
        raise WebhookSignatureError("Webhook secret not configured")
    try:
        body = json.loads(payload)
    except ValueError as exc:
        raise WebhookSignatureError(f"Invalid payload: {exc}") from exc
    if not isinstance(body, dict):
        raise WebhookSignatureError("Invalid payload: expected a JSON object")
    try:
        event = stripe.Webhook.construct_event(payload, signature_header, secret, tolerance=tolerance_seconds)
    except stripe.SignatureVerificationError as exc:
        raise WebhookSignatureError(getattr(exc, "user_message", None) or str(exc)) from exc
    return event
