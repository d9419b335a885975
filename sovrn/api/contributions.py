"""
Dataset contribution and earnings routes.

- GET  /api/datasets/{dataset_id}/contribution: Current membership
- POST /api/datasets/{dataset_id}/contribution: Toggle membership
- GET  /api/portfolio: Balance and recent revenue shares
"""
from typing import Annotated, Optional

from fastapi import APIRouter, Header, Query
from pydantic import BaseModel

from sovrn.features.contributions.service import get_contribution, toggle_contribution
from sovrn.features.revenue.portfolio import RECENT_SHARES_LIMIT, get_portfolio


router = APIRouter(tags=["contributions"])


class ContributionResponse(BaseModel):
    dataset_id: str
    user_id: str
    is_active: bool
    weight: Optional[int] = None


@router.get("/api/datasets/{dataset_id}/contribution", response_model=ContributionResponse)
def read_contribution(dataset_id: str, user_id: Annotated[str, Header(alias="X-User-Id")]):
    return get_contribution(dataset_id, user_id)


@router.post("/api/datasets/{dataset_id}/contribution", response_model=ContributionResponse)
def toggle(dataset_id: str, user_id: Annotated[str, Header(alias="X-User-Id")]):
    """Start contributing (weight 1) or stop; stopping keeps the row inactive."""
    return toggle_contribution(dataset_id, user_id)


@router.get("/api/portfolio")
def portfolio(
    user_id: Annotated[str, Header(alias="X-User-Id")],
    limit: Annotated[int, Query(ge=1, le=100)] = RECENT_SHARES_LIMIT,
):
    return get_portfolio(user_id, limit=limit)
