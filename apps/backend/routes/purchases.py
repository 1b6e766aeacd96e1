"""Purchase line routes: toggling a line's bonus eligibility."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel.ext.asyncio.session import AsyncSession

from database import get_session
from services.eligibility import eligible_amount, load_purchase_lines, set_line_eligibility

router = APIRouter(prefix="/purchases", tags=["purchases"])


class LineEligibilityUpdate(BaseModel):
    discount_eligible: bool


@router.patch("/{purchase_id}/lines/{line_id}")
async def patch_purchase_line(
    purchase_id: int,
    line_id: int,
    body: LineEligibilityUpdate,
    session: AsyncSession = Depends(get_session),
):
    line = await set_line_eligibility(session, purchase_id, line_id, body.discount_eligible)
    lines = (await load_purchase_lines(session, [purchase_id]))[purchase_id]
    return {
        "purchase_id": purchase_id,
        "line_id": line.id,
        "discount_eligible": line.discount_eligible,
        "eligible_amount": float(eligible_amount(lines)),
    }
