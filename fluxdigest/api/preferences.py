import copy
from typing import Any

from fastapi import APIRouter, Body

from fluxdigest.dependencies import AppServices, CurrentUser
from fluxdigest.schemas.preferences import MASKED_SECRET

router = APIRouter()


def mask_preferences(prefs: dict[str, Any]) -> dict[str, Any]:
    """Copy of `prefs` with the AI API key replaced by the mask."""
    masked = copy.deepcopy(prefs)
    ai_config = masked.get("ai_config")
    if isinstance(ai_config, dict) and ai_config.get("apiKey"):
        ai_config["apiKey"] = MASKED_SECRET
    return masked


def merge_preferences(current: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    """Shallow-merge `updates` into `current`.

    A `{key, value}` body updates a single top-level key. A masked AI key in
    the update keeps the stored key.
    """
    if "key" in updates and "value" in updates:
        updates = {updates["key"]: updates["value"]}
    else:
        updates = copy.deepcopy(updates)

    ai_config = updates.get("ai_config")
    if isinstance(ai_config, dict) and ai_config.get("apiKey") == MASKED_SECRET:
        stored_key = (current.get("ai_config") or {}).get("apiKey")
        if stored_key:
            ai_config["apiKey"] = stored_key
        else:
            del ai_config["apiKey"]

    return {**current, **updates}


@router.get("")
async def get_preferences(user: CurrentUser, services: AppServices) -> dict[str, Any]:
    prefs = await services.preferences.get(user.handle)
    return mask_preferences(prefs)


@router.post("")
async def update_preferences(
    user: CurrentUser,
    services: AppServices,
    updates: dict[str, Any] = Body(...),
) -> dict[str, Any]:
    current = await services.preferences.get(user.handle)
    prefs = merge_preferences(current, updates)
    await services.preferences.save(user.handle, prefs)
    return {"success": True, "preferences": mask_preferences(prefs)}
