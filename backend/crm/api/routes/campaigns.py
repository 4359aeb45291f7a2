"""API endpoints for campaigns and audience preview."""

from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from crm.core.audit import client_addr, log_audit
from crm.core.config import settings
from crm.core.db import get_session, repeatable_read_transaction
from crm.core.db_errors import raise_on_lock_conflict, reject_stale_write
from crm.core.deps import get_current_user
from crm.core.rate_limit import limiter
from crm.models.campaign import Campaign
from crm.models.user import User
from crm.schemas.campaign import CampaignCreate, CampaignOut, CampaignUpdate
from crm.schemas.segment import AudiencePreviewOut, AudiencePreviewRequest, ErrorOut
from crm.segments.query import evaluate_audience
from crm.segments.rules import GroupNode, dump_tree, is_complete

router = APIRouter(prefix="/campaigns", tags=["campaigns"])


async def _audience_or_500(session: AsyncSession, tree: GroupNode) -> AudiencePreviewOut:
    try:
        return await evaluate_audience(session, tree)
    except SQLAlchemyError as exc:
        logger.bind(error=str(exc), error_type=type(exc).__name__).error("audience_evaluation_failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error computing audience preview.",
        ) from exc


def _require_complete(tree: GroupNode) -> None:
    if not is_complete(tree):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Please define at least one complete segmentation rule.",
        )


@router.post(
    "/audience-preview",
    response_model=AudiencePreviewOut,
    responses={422: {"model": ErrorOut}, 500: {"model": ErrorOut}},
)
@limiter.limit(settings.AUDIENCE_PREVIEW_RATE)
async def audience_preview(
    payload: AudiencePreviewRequest,
    request: Request,
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
) -> AudiencePreviewOut:
    """Count customers matching the rule tree and return a small email sample."""

    return await _audience_or_500(session, payload.segment_rules)


@router.get("", response_model=List[CampaignOut])
async def list_campaigns(
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
) -> List[CampaignOut]:
    stmt = select(Campaign).order_by(Campaign.created_at.desc(), Campaign.id.desc())
    return (await session.execute(stmt)).scalars().all()


@router.get("/{campaign_id}", response_model=CampaignOut)
async def get_campaign(
    campaign_id: int,
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
) -> CampaignOut:
    obj = await session.scalar(select(Campaign).where(Campaign.id == campaign_id))
    if not obj:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Campaign not found"
        )
    return obj


@router.post("", response_model=CampaignOut, status_code=status.HTTP_201_CREATED)
async def create_campaign(
    payload: CampaignCreate,
    request: Request,
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
) -> CampaignOut:
    """Create a campaign; the audience size is computed from its rules at save time."""

    _require_complete(payload.segment_rules)
    preview = await _audience_or_500(session, payload.segment_rules)

    obj = Campaign(
        name=payload.name,
        description=payload.description,
        message_template=payload.message_template,
        segment_rules=dump_tree(payload.segment_rules),
        audience_size=preview.audience_size,
        status=payload.status,
        created_by=user.user_code,
    )
    session.add(obj)
    await log_audit(
        session,
        user.user_code,
        "campaign",
        None,
        "CREATE",
        details={"name": payload.name, "audience_size": preview.audience_size},
        remote_addr=client_addr(request),
    )
    await session.commit()
    await session.refresh(obj)
    logger.bind(campaign_id=obj.id, audience_size=obj.audience_size).info("campaign_created")
    return obj


@router.put("/{campaign_id}", response_model=CampaignOut)
async def update_campaign(
    campaign_id: int,
    payload: CampaignUpdate,
    request: Request,
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
) -> CampaignOut:
    data = payload.model_dump(exclude_unset=True, exclude_none=True)
    data.pop("expected_updated_at", None)
    if payload.segment_rules is not None:
        _require_complete(payload.segment_rules)
        preview = await _audience_or_500(session, payload.segment_rules)
        data["segment_rules"] = dump_tree(payload.segment_rules)
        data["audience_size"] = preview.audience_size

    try:
        async with repeatable_read_transaction(session):
            obj = await session.scalar(
                select(Campaign)
                .where(Campaign.id == campaign_id)
                .with_for_update(nowait=settings.DB_NOWAIT_LOCKS)
            )
            if not obj:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND, detail="Campaign not found"
                )

            reject_stale_write(obj.updated_at, payload.expected_updated_at, "Campaign")

            if data:
                await session.execute(
                    update(Campaign)
                    .where(Campaign.id == campaign_id)
                    .values(**data, updated_at=datetime.now())
                )
                await log_audit(
                    session,
                    user.user_code,
                    "campaign",
                    str(campaign_id),
                    "UPDATE",
                    details={k: v for k, v in data.items() if k != "segment_rules"},
                    remote_addr=client_addr(request),
                )
    except OperationalError as exc:
        raise_on_lock_conflict(exc, "Campaign")

    return await session.scalar(
        select(Campaign)
        .where(Campaign.id == campaign_id)
        .execution_options(populate_existing=True)
    )


@router.delete("/{campaign_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_campaign(
    campaign_id: int,
    request: Request,
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
) -> Response:
    obj = await session.scalar(select(Campaign).where(Campaign.id == campaign_id))
    if not obj:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Campaign not found"
        )
    await session.delete(obj)
    await log_audit(
        session,
        user.user_code,
        "campaign",
        str(campaign_id),
        "DELETE",
        details={"name": obj.name},
        remote_addr=client_addr(request),
    )
    await session.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
