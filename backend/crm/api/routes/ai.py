"""Natural-language segment rule generation backed by an external AI service."""

from typing import Any, Optional

import requests
from fastapi import APIRouter, Depends, HTTPException, Request, status
from loguru import logger
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from crm.api.routes.campaigns import _audience_or_500
from crm.core.audit import client_addr, log_audit
from crm.core.concurrency import run_in_thread_limited
from crm.core.config import settings
from crm.core.db import get_session
from crm.core.deps import get_current_user
from crm.core.rate_limit import limiter
from crm.models.user import User
from crm.schemas.segment import AiSegmentRulesOut, AiSegmentRulesRequest, ErrorOut
from crm.segments.errors import RuleValidationError
from crm.segments.rules import load_tree, validate_tree

router = APIRouter(prefix="/ai", tags=["ai"])


def _request_segment_rules(
    api_url: str, api_key: Optional[str], query: str, timeout: int
) -> Any:
    """Call the AI service; it answers with a rule tree, optionally wrapped in ``segmentRules``."""
    headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
    resp = requests.post(
        api_url,
        json={"naturalLanguageQuery": query},
        headers=headers,
        timeout=timeout,
    )
    resp.raise_for_status()
    return resp.json()


@router.post(
    "/segment-rules",
    response_model=AiSegmentRulesOut,
    responses={502: {"model": ErrorOut}, 503: {"model": ErrorOut}},
)
@limiter.limit(settings.AI_RULES_RATE)
async def generate_segment_rules(
    payload: AiSegmentRulesRequest,
    request: Request,
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
) -> AiSegmentRulesOut:
    if not settings.ai_rules_enabled:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="AI rule generation is not configured.",
        )

    try:
        raw = await run_in_thread_limited(
            _request_segment_rules,
            settings.AI_RULES_API_URL,
            settings.AI_RULES_API_KEY,
            payload.natural_language_query,
            settings.AI_RULES_TIMEOUT_SEC,
        )
    except (requests.RequestException, ValueError) as exc:
        logger.bind(error=str(exc)).error("ai_rules_request_failed")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Error communicating with AI service.",
        ) from exc

    rules_data = raw.get("segmentRules", raw) if isinstance(raw, dict) else raw
    try:
        tree = load_tree(rules_data)
        validate_tree(tree)
    except (ValidationError, RuleValidationError) as exc:
        logger.bind(error=str(exc)).warning("ai_rules_invalid_tree")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="AI service returned invalid segment rules.",
        ) from exc

    preview = await _audience_or_500(session, tree)

    await log_audit(
        session,
        user.user_code,
        "segment_rules",
        None,
        "AI_GENERATE",
        details={"query": payload.natural_language_query, "audience_size": preview.audience_size},
        remote_addr=client_addr(request),
    )
    await session.commit()
    return AiSegmentRulesOut(segment_rules=tree, audience_size=preview.audience_size)
