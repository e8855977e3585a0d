"""
Budget service gateway.

All spend bookings generated from AOG events go through a gateway object
with one method, ``create_actual_spend``, returning the spend id.

    LocalBudgetGateway  — writes an ActualSpend row into the local database
                          (default; no BUDGET_SERVICE_URL configured)
    HttpBudgetGateway   — POSTs to ``{BUDGET_SERVICE_URL}/actual-spends``

HTTP calls are a single attempt with a timeout; failures surface as
BudgetServiceError and the caller decides whether to retry. Bookings carry
the AOG event id as idempotency key (``Idempotency-Key`` header remotely,
unique ``aog_event_id`` locally) so a retried booking returns the first spend.

Testability: pass a fake ``session`` to HttpBudgetGateway() in tests instead
of letting it create a real requests.Session internally.
"""

from __future__ import annotations

import logging
import time

import requests
from flask import Flask, current_app
from sqlalchemy import select

from aog_tracker.core.exceptions import BudgetServiceError
from aog_tracker.models import db
from aog_tracker.models.budget import ActualSpend

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 10


class LocalBudgetGateway:
    """Books spends into the ``actual_spends`` table of this service."""

    def __init__(self, currency: str = "USD") -> None:
        self.currency = currency

    def create_actual_spend(
        self,
        *,
        amount: float,
        clause_id: str,
        period: str,
        notes: str,
        aircraft_id: int | None = None,
        created_by: str = "",
        aog_event_id: int | None = None,
    ) -> str:
        if aog_event_id is not None:
            existing = db.session.execute(
                select(ActualSpend).where(ActualSpend.aog_event_id == aog_event_id)
            ).scalar_one_or_none()
            if existing is not None:
                logger.info("Spend already booked id=%s", existing.id, extra={"event_id": aog_event_id})
                return str(existing.id)
        spend = ActualSpend(
            amount=amount,
            clause_id=clause_id,
            period=period,
            notes=notes,
            aircraft_id=aircraft_id,
            aog_event_id=aog_event_id,
            currency=self.currency,
            created_by=created_by,
        )
        db.session.add(spend)
        db.session.flush()
        return str(spend.id)


class HttpBudgetGateway:
    """Books spends through the external budget service REST API."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: int = _DEFAULT_TIMEOUT,
        currency: str = "USD",
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.currency = currency
        self._session = session or requests.Session()

    def create_actual_spend(
        self,
        *,
        amount: float,
        clause_id: str,
        period: str,
        notes: str,
        aircraft_id: int | None = None,
        created_by: str = "",
        aog_event_id: int | None = None,
    ) -> str:
        url = f"{self.base_url}/actual-spends"
        payload = {
            "amount": amount,
            "clauseId": clause_id,
            "period": period,
            "notes": notes,
            "aircraftId": aircraft_id,
            "currency": self.currency,
            "createdBy": created_by,
            "aogEventId": aog_event_id,
        }
        headers = {}
        if aog_event_id is not None:
            headers["Idempotency-Key"] = f"aog-event-{aog_event_id}"
        t0 = time.monotonic()
        try:
            resp = self._session.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.error("Budget service unreachable url=%s error=%s", url, exc)
            raise BudgetServiceError(f"Budget service unreachable: {exc}") from exc
        duration_ms = int((time.monotonic() - t0) * 1000)

        if not 200 <= resp.status_code < 300:
            logger.error(
                "Budget service rejected spend status=%s duration_ms=%d",
                resp.status_code, duration_ms,
            )
            raise BudgetServiceError(
                f"Budget service returned HTTP {resp.status_code}",
                details={"status_code": resp.status_code},
            )

        try:
            body = resp.json()
        except ValueError as exc:
            raise BudgetServiceError("Budget service returned a non-JSON body") from exc
        if not isinstance(body, dict):
            raise BudgetServiceError(
                "Budget service returned an unexpected body",
                details={"body_type": type(body).__name__},
            )
        spend_id = body.get("id") or body.get("_id")
        if not spend_id:
            raise BudgetServiceError("Budget service response has no spend id")

        logger.info("Budget spend created id=%s duration_ms=%d", spend_id, duration_ms)
        return str(spend_id)


def get_budget_gateway(app: Flask | None = None):
    """Return the gateway selected by BUDGET_SERVICE_URL (local when unset)."""
    app = app or current_app
    gateway = app.extensions.get("aog_budget_gateway")
    if gateway is not None:
        return gateway
    url = app.config.get("BUDGET_SERVICE_URL")
    currency = app.config.get("BUDGET_CURRENCY", "USD")
    if url:
        return HttpBudgetGateway(
            url,
            timeout=app.config.get("BUDGET_SERVICE_TIMEOUT", _DEFAULT_TIMEOUT),
            currency=currency,
        )
    return LocalBudgetGateway(currency=currency)
