"""Pydantic models for audience preview and segment catalogue endpoints."""

from typing import List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from crm.segments.rules import GroupNode


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AudiencePreviewRequest(_CamelModel):
    """Body of ``POST /campaigns/audience-preview``: ``{"segmentRules": <root group>}``."""

    segment_rules: GroupNode


class AudiencePreviewOut(_CamelModel):
    success: bool = True
    audience_size: int = Field(0, ge=0)
    sample_customer_emails: List[str] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> "AudiencePreviewOut":
        return cls(audience_size=0, sample_customer_emails=[])


class ErrorOut(BaseModel):
    success: bool = False
    message: str


class ConditionOption(BaseModel):
    value: str
    label: str


class FieldOption(BaseModel):
    value: str
    label: str
    type: str
    conditions: List[ConditionOption]


class AiSegmentRulesRequest(_CamelModel):
    natural_language_query: str = Field(..., min_length=1, max_length=1000)


class AiSegmentRulesOut(_CamelModel):
    success: bool = True
    segment_rules: GroupNode
    audience_size: int = Field(0, ge=0)
