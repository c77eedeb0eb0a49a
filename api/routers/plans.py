"""Subscription plan catalogue."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.database import get_db
from deps import require_admin
from models.subscription_plan import SubscriptionPlan
from schemas import PlanCreate, PlanResponse, PlanCategory

router = APIRouter()

# Categories a customer who wants a given vendor type can buy
VENDOR_TYPE_CATEGORIES = {
    "home_chef": ("universal", "home_chef_specific", "both_options"),
    "food_vendor": ("universal", "food_vendor_specific", "both_options"),
}


@router.get("/", response_model=list[PlanResponse])
async def list_plans(
    category: PlanCategory | None = None,
    vendor_type: str | None = Query(None, pattern="^(home_chef|food_vendor)$"),
    db: AsyncSession = Depends(get_db),
):
    """Active plans, cheapest first."""
    query = select(SubscriptionPlan).where(SubscriptionPlan.is_active == True)
    if category:
        query = query.where(SubscriptionPlan.category == category.value)
    if vendor_type:
        query = query.where(SubscriptionPlan.category.in_(VENDOR_TYPE_CATEGORIES[vendor_type]))
    result = await db.execute(query.order_by(SubscriptionPlan.discounted_price))
    return result.scalars().all()


@router.get("/{plan_id}")
async def get_plan(plan_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    plan = await db.get(SubscriptionPlan, plan_id)
    if not plan:
        raise HTTPException(status_code=404, detail="Plan not found")
    return {
        "plan": PlanResponse.model_validate(plan),
        "credits": plan.calculate_credits(),
        "discount_amount": plan.get_discount_amount(),
        "discount_percentage": plan.get_discount_percentage(),
        "can_purchase": plan.can_purchase(),
    }


@router.post("/", response_model=PlanResponse, status_code=201)
async def create_plan(
    data: PlanCreate,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin),
):
    plan = SubscriptionPlan(**data.model_dump(mode="json"))
    db.add(plan)
    await db.commit()
    await db.refresh(plan)
    return plan
