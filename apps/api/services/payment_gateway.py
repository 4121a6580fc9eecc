"""
Payment gateway adapters for goal stakes.

A stake is held when the goal is created, then either released back to the
payer (goal completed) or captured to the platform (goal failed).

    hold(amount, source_token) -> charge_id
    refund(charge_id)     release the hold
    capture(charge_id)    settle the hold

Stripe holds are uncaptured charges (capture=False). PayPal holds are
authorizations on an order the payer approved with intent=AUTHORIZE.
Provider errors are surfaced as PaymentError; nothing is retried here.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
import logging
from typing import Any, Callable, Optional

import requests
import stripe

from core.config import settings
from core.exceptions import PaymentError
from models import PaymentProvider

logger = logging.getLogger(__name__)

GatewayResolver = Callable[[PaymentProvider], "PaymentGateway"]


def to_minor_units(amount: Decimal) -> int:
    """Dollars -> cents, half-up."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentGateway(ABC):
    provider: PaymentProvider

    @abstractmethod
    def hold(
        self,
        *,
        amount: Decimal,
        source_token: str,
        description: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> str:
        """Reserve funds without settling them. Returns the provider charge id."""

    @abstractmethod
    def refund(self, charge_id: str, *, idempotency_key: Optional[str] = None) -> None:
        """Release a held charge back to the payer."""

    @abstractmethod
    def capture(self, charge_id: str, *, idempotency_key: Optional[str] = None) -> None:
        """Settle a held charge to the platform account."""


@dataclass(frozen=True)
class StripeConfig:
    secret_key: str
    api_version: str
    currency: str


def _get_stripe_config() -> StripeConfig:
    """
    Load Stripe config from Settings.

    Fail closed: without a secret key no stake can be held.
    """
    secret_key = getattr(settings, "STRIPE_SECRET_KEY", None)
    if not secret_key:
        raise PaymentError("Stripe not configured (missing: STRIPE_SECRET_KEY)", gateway_status=503)
    return StripeConfig(
        secret_key=str(secret_key),
        api_version=settings.STRIPE_API_VERSION,
        currency=settings.STAKE_CURRENCY,
    )


class StripeGateway(PaymentGateway):
    provider = PaymentProvider.STRIPE

    def __init__(self, cfg: Optional[StripeConfig] = None) -> None:
        cfg = cfg or _get_stripe_config()
        stripe.api_key = cfg.secret_key
        stripe.api_version = cfg.api_version
        self.cfg = cfg

    def hold(
        self,
        *,
        amount: Decimal,
        source_token: str,
        description: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> str:
        try:
            charge = stripe.Charge.create(
                amount=to_minor_units(amount),
                currency=self.cfg.currency,
                source=source_token,
                description=description,
                metadata=metadata or {},
                capture=False,  # hold the funds, settle later
            )
        except stripe.StripeError as e:
            logger.warning("Stripe hold failed: %s", e.user_message or str(e))
            raise PaymentError(e.user_message or "Payment was declined", gateway_status=e.http_status)
        logger.info("Stripe hold created: %s", charge.id)
        return str(charge.id)

    def refund(self, charge_id: str, *, idempotency_key: Optional[str] = None) -> None:
        # Refunding an uncaptured charge releases the authorization.
        params: dict[str, Any] = {"charge": charge_id}
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        try:
            stripe.Refund.create(**params)
        except stripe.StripeError as e:
            logger.error("Stripe refund failed for %s: %s", charge_id, str(e))
            raise PaymentError(f"Refund failed: {e.user_message or 'gateway error'}", gateway_status=e.http_status)
        logger.info("Stripe hold released: %s", charge_id)

    def capture(self, charge_id: str, *, idempotency_key: Optional[str] = None) -> None:
        params: dict[str, Any] = {}
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        try:
            stripe.Charge.capture(charge_id, **params)
        except stripe.StripeError as e:
            logger.error("Stripe capture failed for %s: %s", charge_id, str(e))
            raise PaymentError(f"Capture failed: {e.user_message or 'gateway error'}", gateway_status=e.http_status)
        logger.info("Stripe hold captured: %s", charge_id)


@dataclass(frozen=True)
class PayPalConfig:
    client_id: str
    client_secret: str
    api_base: str
    currency: str
    timeout: int


def _get_paypal_config() -> PayPalConfig:
    missing = [
        name for name, val in [
            ("PAYPAL_CLIENT_ID", settings.PAYPAL_CLIENT_ID),
            ("PAYPAL_CLIENT_SECRET", settings.PAYPAL_CLIENT_SECRET),
        ] if not val
    ]
    if missing:
        raise PaymentError(f"PayPal not configured (missing: {', '.join(missing)})", gateway_status=503)
    return PayPalConfig(
        client_id=str(settings.PAYPAL_CLIENT_ID),
        client_secret=str(settings.PAYPAL_CLIENT_SECRET),
        api_base=settings.paypal_api_base,
        currency=settings.STAKE_CURRENCY.upper(),
        timeout=settings.EXTERNAL_API_TIMEOUT,
    )


class PayPalGateway(PaymentGateway):
    """
    PayPal Orders v2 with intent=AUTHORIZE.

    The client creates an order (create_order), the payer approves it in the
    PayPal UI, and the approved order id is the source_token for hold().
    The stored charge id is the authorization id.
    """

    provider = PaymentProvider.PAYPAL

    def __init__(self, cfg: Optional[PayPalConfig] = None) -> None:
        self.cfg = cfg or _get_paypal_config()

    def _access_token(self) -> str:
        try:
            r = requests.post(
                f"{self.cfg.api_base}/v1/oauth2/token",
                data={"grant_type": "client_credentials"},
                auth=(self.cfg.client_id, self.cfg.client_secret),
                timeout=self.cfg.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise PaymentError(f"PayPal unreachable: {e}")
        if not r.ok:
            raise PaymentError("PayPal authentication failed", gateway_status=r.status_code)
        return str(r.json()["access_token"])

    def _post(self, path: str, *, json: Optional[dict] = None, request_id: Optional[str] = None) -> dict:
        headers = {
            "Authorization": f"Bearer {self._access_token()}",
            "Content-Type": "application/json",
        }
        if request_id:
            headers["PayPal-Request-Id"] = request_id
        try:
            r = requests.post(
                f"{self.cfg.api_base}{path}",
                json=json or {},
                headers=headers,
                timeout=self.cfg.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise PaymentError(f"PayPal unreachable: {e}")
        try:
            payload = r.json() if r.content else {}
        except ValueError:
            payload = {}
        if not r.ok:
            message = payload.get("message") or payload.get("name") or "PayPal request failed"
            logger.warning("PayPal %s failed (%s): %s", path, r.status_code, message)
            raise PaymentError(message, gateway_status=r.status_code)
        return payload

    def create_order(self, *, amount: Decimal) -> str:
        order = self._post(
            "/v2/checkout/orders",
            json={
                "intent": "AUTHORIZE",
                "purchase_units": [
                    {
                        "amount": {
                            "currency_code": self.cfg.currency,
                            "value": f"{Decimal(amount):.2f}",
                        },
                    }
                ],
            },
        )
        return str(order["id"])

    def hold(
        self,
        *,
        amount: Decimal,
        source_token: str,
        description: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> str:
        order = self._post(f"/v2/checkout/orders/{source_token}/authorize", request_id=f"authorize-{source_token}")
        try:
            authorization = order["purchase_units"][0]["payments"]["authorizations"][0]
        except (KeyError, IndexError):
            raise PaymentError("PayPal order has no authorization")

        authorization_id = str(authorization["id"])
        authorized = Decimal(str(authorization.get("amount", {}).get("value", "0")))
        if authorized != Decimal(amount).quantize(Decimal("0.01")):
            # Never keep a hold for a different amount than the stake.
            self.refund(authorization_id)
            raise PaymentError(f"Authorized amount {authorized} does not match stake {amount}")

        logger.info("PayPal hold created: %s (order %s)", authorization_id, source_token)
        return authorization_id

    def refund(self, charge_id: str, *, idempotency_key: Optional[str] = None) -> None:
        self._post(f"/v2/payments/authorizations/{charge_id}/void", request_id=idempotency_key)
        logger.info("PayPal hold voided: %s", charge_id)

    def capture(self, charge_id: str, *, idempotency_key: Optional[str] = None) -> None:
        self._post(
            f"/v2/payments/authorizations/{charge_id}/capture",
            json={"final_capture": True},
            request_id=idempotency_key,
        )
        logger.info("PayPal hold captured: %s", charge_id)


def get_payment_gateway(provider: PaymentProvider) -> PaymentGateway:
    """Build the adapter for a provider. Config is checked on construction."""
    provider = PaymentProvider(provider)
    if provider is PaymentProvider.STRIPE:
        return StripeGateway()
    if provider is PaymentProvider.PAYPAL:
        return PayPalGateway()
    raise PaymentError(f"Unsupported payment provider: {provider}")


def get_gateway_resolver() -> GatewayResolver:
    """FastAPI dependency; tests override it with a fake gateway."""
    return get_payment_gateway
