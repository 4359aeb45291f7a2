"""Pydantic models for campaign endpoints."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from crm.segments.rules import GroupNode

CampaignStatus = Literal["draft", "scheduled", "sent"]


class CampaignBase(BaseModel):
    """Base campaign schema with common fields."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str = Field(..., description="Campaign name", min_length=1, max_length=255)
    description: Optional[str] = Field(None, description="Short description")
    message_template: str = Field(
        ..., description="Message body; supports {{customer_name}} and {{customer_email}}", min_length=1
    )
    segment_rules: GroupNode = Field(..., description="Audience segmentation rule tree")
    status: CampaignStatus = "draft"


class CampaignCreate(CampaignBase):
    """Schema for creating a new campaign."""

    pass


class CampaignUpdate(BaseModel):
    """Schema for updating an existing campaign; omitted fields are left unchanged."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    message_template: Optional[str] = Field(None, min_length=1)
    segment_rules: Optional[GroupNode] = None
    status: Optional[CampaignStatus] = None
    expected_updated_at: Optional[datetime] = Field(
        None, description="Expected updated_at timestamp for optimistic locking"
    )


class CampaignOut(CampaignBase):
    """Schema for campaign responses."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int = Field(..., description="Campaign ID")
    audience_size: int = Field(0, ge=0)
    created_by: Optional[str] = None
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")
