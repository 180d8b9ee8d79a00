"""Attribute sources consulted during rule evaluation."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Protocol

import httpx

from clinic_access.schemas.access import AccessCheckContext

LOGGER = logging.getLogger("clinic_access.services.consent")


class AttributeProvider(Protocol):
    """Supplies ``<prefix>.*`` attributes for a request.

    Providers are only consulted when a candidate rule reads an attribute
    under their prefix. Any exception or a lookup slower than the configured
    bound turns those attributes into ``UNKNOWN``.
    """

    prefix: str

    def fetch(self, context: AccessCheckContext, *, timeout_seconds: float) -> Mapping[str, Any]:
        ...


class HttpConsentProvider(AttributeProvider):
    """Reads a patient's consent directives from the consent service.

    ``GET {base_url}/patients/{patient_id}/consents`` is expected to return a
    flat JSON object such as ``{"hie_sharing": true, "research": false}``;
    each key is exposed as ``consent.<key>``.
    """

    prefix = "consent"

    def __init__(self, base_url: str, *, client: httpx.Client | None = None) -> None:
        self._client = client or httpx.Client(base_url=base_url.rstrip("/"))

    def fetch(self, context: AccessCheckContext, *, timeout_seconds: float) -> Mapping[str, Any]:
        if not context.patient_id:
            return {}
        response = self._client.get(
            f"/patients/{context.patient_id}/consents",
            timeout=timeout_seconds,
        )
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError("consent service returned a non-object payload")
        attributes: Dict[str, Any] = {f"{self.prefix}.{key}": value for key, value in payload.items()}
        LOGGER.debug(
            "consent_attributes_loaded",
            extra={"patient_id": context.patient_id, "attributes": sorted(attributes)},
        )
        return attributes
