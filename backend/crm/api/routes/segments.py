from typing import List

from fastapi import APIRouter, Depends

from crm.core.deps import get_current_user
from crm.models.user import User
from crm.schemas.segment import FieldOption
from crm.segments.rules import field_catalog

router = APIRouter(prefix="/segments", tags=["segments"])


@router.get("/fields", response_model=List[FieldOption])
async def list_segment_fields(user: User = Depends(get_current_user)) -> List[FieldOption]:
    """Fields a rule may filter on, each with the conditions valid for its type."""

    return [FieldOption.model_validate(entry) for entry in field_catalog()]
