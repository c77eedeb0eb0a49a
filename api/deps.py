"""Request dependencies: caller identity and role checks."""

import uuid

from fastapi import Depends, Header, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.database import get_db
from models.user import User
from models.vendor_profile import VendorProfile


async def get_current_user(
    x_user_id: str = Header(..., description="Authenticated user id, set by the gateway"),
    db: AsyncSession = Depends(get_db),
) -> User:
    try:
        user_id = uuid.UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid user id")
    user = await db.get(User, user_id)
    if not user or user.is_blocked:
        raise HTTPException(status_code=401, detail="User not found or blocked")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


async def get_current_vendor(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> VendorProfile:
    if user.role != "vendor":
        raise HTTPException(status_code=403, detail="Vendor access required")
    vendor = (await db.execute(
        select(VendorProfile).where(VendorProfile.user_id == user.id)
    )).scalar_one_or_none()
    if not vendor:
        raise HTTPException(status_code=404, detail="Vendor profile not found")
    return vendor
