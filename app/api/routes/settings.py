"""
Platform Settings API Routes
"""
from typing import Any

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.actor import operator_name, require_operator
from app.db.database import get_db
from app.domain.services.settings_provider import PlatformConfig, SettingsProvider
from app.state_machine.order_states import Actor

router = APIRouter()


@router.get("/", response_model=PlatformConfig, summary="Current platform settings")
async def get_settings(
    actor: Actor = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    return await SettingsProvider(db).get_config()


@router.patch(
    "/",
    response_model=PlatformConfig,
    summary="Update platform settings",
    description=(
        "Partial update. The merged settings are validated as a whole; "
        "new values apply to orders placed after the change."
    ),
)
async def update_settings(
    changes: dict[str, Any] = Body(...),
    actor: Actor = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    return await SettingsProvider(db).update_config(changes, updated_by=operator_name(actor))
