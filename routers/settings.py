# Settings Router - endpoints, timings and browsing policy in config/settings.json
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from config.settings_loader import reload_settings, reset_settings, update_settings

router = APIRouter(tags=["Settings"])


class UpdateSettingsRequest(BaseModel):
    settings: dict


@router.get("/settings")
async def get_settings():
    """Current settings, re-read from disk."""
    try:
        return {"status": "success", "settings": reload_settings()}
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to load settings: {str(e)}")


@router.put("/settings")
async def put_settings(request: UpdateSettingsRequest):
    """Merge the given keys into config/settings.json.

    Timings and endpoints are read on every use, so they apply to the next
    fetch or probe. storage.state_file only changes after a restart.
    """
    try:
        current = update_settings(request.settings)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to save settings: {str(e)}")

    warnings = []
    if "storage" in request.settings:
        warnings.append("storage.state_file takes effect after a restart")
    return {"status": "success", "settings": current, "warnings": warnings}


@router.post("/settings/reset")
async def reset_to_defaults():
    return {"status": "success", "settings": reset_settings()}
