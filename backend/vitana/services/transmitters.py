# Overview: Fiscal transmitters; the seam between the NFCe state machine and SEFAZ.

from __future__ import annotations

import itertools
import time
from dataclasses import dataclass
from datetime import datetime

import httpx
from flask import current_app

from ..time_utils import parse_iso_datetime, utcnow
from .nfce_xml import SefazResponseError, build_cancel_event_xml, parse_sefaz_reply

AUTHORIZED_CODES = {"100", "150"}  # autorizado / autorizado fora de prazo
CANCEL_REGISTERED_CODES = {"135", "155"}


class ExternalTransmissionError(Exception):
    """SEFAZ could not be reached or did not answer usably. Nothing was decided."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass(frozen=True)
class TransmissionResult:
    """Authority decision. authorized=False means SEFAZ refused (not a transport failure)."""
    authorized: bool
    status_code: str
    reason: str
    protocol: str | None = None
    received_at: datetime | None = None


class FiscalTransmitter:
    """
    Submits documents to the tax authority.

    authorize() and cancel() either return the authority's decision or
    raise ExternalTransmissionError. They never touch the database.
    """

    def authorize(self, document) -> TransmissionResult:
        raise NotImplementedError

    def cancel(self, document, justificativa: str) -> TransmissionResult:
        raise NotImplementedError


class MockTransmitter(FiscalTransmitter):
    """
    Homologation stand-in for SEFAZ. Authorizes everything unless told to
    reject (reject_with=(cStat, reason)) or to fail the next `fail_times`
    calls with a transport error.
    """

    def __init__(self, reject_with: tuple[str, str] | None = None, fail_times: int = 0):
        self.reject_with = reject_with
        self.fail_times = fail_times
        self.calls: list[tuple[str, str]] = []
        self._sequence = itertools.count(1)

    def _next_protocol(self) -> str:
        return f"135{int(time.time()) % 10**8:08d}{next(self._sequence) % 10**4:04d}"

    def _maybe_fail(self) -> None:
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ExternalTransmissionError("SEFAZ unreachable (simulated)")

    def authorize(self, document) -> TransmissionResult:
        self.calls.append(("authorize", document.chave_acesso))
        self._maybe_fail()
        if self.reject_with:
            code, reason = self.reject_with
            return TransmissionResult(authorized=False, status_code=code, reason=reason, received_at=utcnow())
        return TransmissionResult(
            authorized=True,
            status_code="100",
            reason="Autorizado o uso da NF-e",
            protocol=self._next_protocol(),
            received_at=utcnow(),
        )

    def cancel(self, document, justificativa: str) -> TransmissionResult:
        self.calls.append(("cancel", document.chave_acesso))
        self._maybe_fail()
        return TransmissionResult(
            authorized=True,
            status_code="135",
            reason="Evento registrado e vinculado a NF-e",
            protocol=self._next_protocol(),
            received_at=utcnow(),
        )


class HttpTransmitter(FiscalTransmitter):
    """
    Posts XML to a SEFAZ-compatible endpoint.

    Transport errors, timeouts and 5xx replies are retried with exponential
    backoff up to `attempts`; then ExternalTransmissionError. 4xx replies and
    unparseable bodies fail immediately. Any parsed cStat is an authority
    decision and is returned, never retried.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        attempts: int = 3,
        backoff_base: float = 0.5,
        transport: httpx.BaseTransport | None = None,
    ):
        if not url:
            raise ValueError("FISCAL_SEFAZ_URL is required for the http transmitter")
        self.url = url.rstrip("/")
        self.timeout = timeout
        self.attempts = max(1, attempts)
        self.backoff_base = backoff_base
        self.transport = transport

    def _post(self, path: str, body: str) -> dict:
        headers = {"Content-Type": "application/xml; charset=utf-8"}
        last_exc: Exception | None = None

        for attempt in range(self.attempts):
            try:
                with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                    response = client.post(f"{self.url}/{path}", content=body.encode("utf-8"), headers=headers)
                if response.status_code >= 500:
                    raise httpx.HTTPStatusError(
                        f"SEFAZ returned {response.status_code}", request=response.request, response=response
                    )
                if response.status_code >= 400:
                    raise ExternalTransmissionError(
                        f"SEFAZ refused the request with HTTP {response.status_code}",
                        details={"http_status": response.status_code},
                    )
                return parse_sefaz_reply(response.text)
            except (httpx.TransportError, httpx.HTTPStatusError) as exc:
                last_exc = exc
                current_app.logger.warning(
                    "SEFAZ %s attempt %d/%d failed: %s", path, attempt + 1, self.attempts, exc
                )
                if attempt < self.attempts - 1:
                    time.sleep(self.backoff_base * (2 ** attempt))
            except SefazResponseError as exc:
                raise ExternalTransmissionError(str(exc)) from exc

        raise ExternalTransmissionError(
            "SEFAZ unreachable",
            details={"attempts": self.attempts, "last_error": str(last_exc)},
        ) from last_exc

    @staticmethod
    def _received_at(reply: dict) -> datetime:
        try:
            return parse_iso_datetime(reply.get("received_at")) or utcnow()
        except ValueError:
            return utcnow()

    def authorize(self, document) -> TransmissionResult:
        reply = self._post("autorizacao", document.xml_gerado)
        return TransmissionResult(
            authorized=reply["status_code"] in AUTHORIZED_CODES,
            status_code=reply["status_code"],
            reason=reply["reason"],
            protocol=reply["protocol"],
            received_at=self._received_at(reply),
        )

    def cancel(self, document, justificativa: str) -> TransmissionResult:
        body = build_cancel_event_xml(document, justificativa, utcnow())
        reply = self._post("evento", body)
        return TransmissionResult(
            authorized=reply["status_code"] in CANCEL_REGISTERED_CODES,
            status_code=reply["status_code"],
            reason=reply["reason"],
            protocol=reply["protocol"],
            received_at=self._received_at(reply),
        )


def build_transmitter(config) -> FiscalTransmitter:
    kind = (config.get("FISCAL_TRANSMITTER") or "mock").lower()
    if kind == "mock":
        return MockTransmitter()
    if kind == "http":
        return HttpTransmitter(
            config.get("FISCAL_SEFAZ_URL", ""),
            timeout=config.get("FISCAL_TRANSMIT_TIMEOUT", 10.0),
            attempts=config.get("FISCAL_TRANSMIT_ATTEMPTS", 3),
            backoff_base=config.get("FISCAL_TRANSMIT_BACKOFF", 0.5),
        )
    raise ValueError(f"Unknown FISCAL_TRANSMITTER: {kind}")


def get_transmitter() -> FiscalTransmitter:
    return current_app.extensions["fiscal_transmitter"]
