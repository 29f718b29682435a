from __future__ import annotations
import ipaddress
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from signwatch.api.deps import get_session
from signwatch.core.timeutil import utcnow
from signwatch.repositories.alerts import add_whitelist, delete_whitelist, list_whitelist

router = APIRouter(prefix="/whitelist", tags=["whitelist"])


class WhitelistIn(BaseModel):
    ip_address: str = Field(..., min_length=1, max_length=64)
    note: Optional[str] = Field(None, max_length=500)

    @field_validator("ip_address")
    @classmethod
    def _valid_ip(cls, v: str) -> str:
        v = v.strip()
        ipaddress.ip_address(v)  # ValueError -> 422
        return v


class WhitelistOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ip_address: str
    note: Optional[str] = None
    created_at: datetime


@router.get("", response_model=List[WhitelistOut])
async def get_whitelist(session: AsyncSession = Depends(get_session)):
    return [WhitelistOut.model_validate(r) for r in await list_whitelist(session)]


@router.post("", response_model=WhitelistOut, status_code=status.HTTP_201_CREATED)
async def create_whitelist_entry(payload: WhitelistIn, session: AsyncSession = Depends(get_session)):
    try:
        entry = await add_whitelist(session, ip_address=payload.ip_address, note=payload.note, now=utcnow())
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise HTTPException(status_code=409, detail=f"{payload.ip_address} is already whitelisted")
    return WhitelistOut.model_validate(entry)


@router.delete("/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_whitelist_entry(entry_id: int, session: AsyncSession = Depends(get_session)):
    if not await delete_whitelist(session, entry_id):
        raise HTTPException(status_code=404, detail="whitelist entry not found")
    await session.commit()
