"""Async HTTP client for the CRM API used by rule editors and scripts."""

from __future__ import annotations

from typing import Any, Optional

import httpx
from loguru import logger

from crm.schemas.auth import CurrentUserOut
from crm.schemas.segment import AiSegmentRulesOut, AudiencePreviewOut
from crm.segments.preview import AudiencePreviewError
from crm.segments.rules import GroupNode, dump_tree

NO_CACHE_HEADERS = {"Cache-Control": "no-cache", "Pragma": "no-cache", "Expires": "0"}


class RuleGenerationError(Exception):
    """The AI rule generation request failed; ``message`` is fit to show to the user."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def _json_or_none(response: httpx.Response) -> Optional[dict[str, Any]]:
    try:
        payload = response.json()
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


def _error_message(payload: Optional[dict[str, Any]], default: str) -> str:
    if payload:
        for key in ("message", "detail"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    return default


class CrmApiClient:
    """Thin wrapper over ``httpx.AsyncClient`` speaking the CRM JSON contract.

    Pass ``transport`` to route requests somewhere other than the network
    (e.g. ``httpx.ASGITransport`` or ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)
        self.set_token(token)

    async def __aenter__(self) -> "CrmApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def set_token(self, token: Optional[str]) -> None:
        if token:
            self._client.headers["Authorization"] = f"Bearer {token}"
        else:
            self._client.headers.pop("Authorization", None)

    async def get_audience_preview(self, tree: GroupNode) -> AudiencePreviewOut:
        """POST the tree and return the preview; raises ``AudiencePreviewError`` on any failure."""

        try:
            response = await self._client.post(
                "/api/campaigns/audience-preview",
                json={"segmentRules": dump_tree(tree)},
            )
        except httpx.HTTPError as exc:
            logger.bind(error=str(exc)).warning("audience_preview_transport_error")
            raise AudiencePreviewError() from exc

        payload = _json_or_none(response)
        if response.is_error or not payload or not payload.get("success"):
            raise AudiencePreviewError(
                _error_message(payload, "Failed to get audience preview."),
                status_code=response.status_code,
            )
        return AudiencePreviewOut.model_validate(payload)

    async def get_current_user(self) -> CurrentUserOut:
        response = await self._client.get("/api/auth/current_user", headers=NO_CACHE_HEADERS)
        response.raise_for_status()
        return CurrentUserOut.model_validate(response.json())

    async def login(self, username: str, password: str) -> dict[str, Any]:
        response = await self._client.post(
            "/api/auth/login", json={"username": username, "password": password}
        )
        response.raise_for_status()
        payload = response.json()
        self.set_token(payload["access_token"])
        return payload

    async def logout(self) -> None:
        try:
            response = await self._client.get("/api/auth/logout")
            response.raise_for_status()
        finally:
            self.set_token(None)

    async def generate_segment_rules(self, natural_language_query: str) -> AiSegmentRulesOut:
        try:
            response = await self._client.post(
                "/api/ai/segment-rules",
                json={"naturalLanguageQuery": natural_language_query},
            )
        except httpx.HTTPError as exc:
            raise RuleGenerationError("Error communicating with AI service.") from exc
        payload = _json_or_none(response)
        if response.is_error or not payload or not payload.get("success"):
            raise RuleGenerationError(
                _error_message(payload, "Failed to generate rules from AI."),
                status_code=response.status_code,
            )
        return AiSegmentRulesOut.model_validate(payload)
