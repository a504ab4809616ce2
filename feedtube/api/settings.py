from __future__ import annotations

from fastapi import APIRouter, HTTPException
from pydantic import ValidationError

from .. import crud
from ..db import get_session
from ..schemas import SettingUpdate, UserSettings

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("", response_model=UserSettings)
async def read_settings():
    async with get_session() as session:
        return await crud.get_user_settings(session)


@router.put("", response_model=UserSettings)
async def update_setting(body: SettingUpdate):
    fields = set(crud.SETTING_KEYS.values())
    field = crud.SETTING_KEYS.get(body.key, body.key)
    if field not in fields:
        raise HTTPException(status_code=400, detail=f"Unknown setting: {body.key}")
    async with get_session() as session:
        current = await crud.get_user_settings(session)
        try:
            updated = UserSettings.model_validate({**current.model_dump(), field: body.value})
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=f"Invalid value for {body.key}") from e
        await crud.set_user_setting(session, field, getattr(updated, field))
    return updated
