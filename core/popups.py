import logging
from typing import Optional

from core.surface import BrowsingSurface, NewWindowRequest, SurfaceFactory

logger = logging.getLogger("popups")


class PopupManager:
    """Spawns and destroys secondary surfaces for new-window requests."""

    def __init__(self, factory: SurfaceFactory):
        self.factory = factory

    async def spawn(self, parent: BrowsingSurface, request: NewWindowRequest) -> BrowsingSurface:
        popup = await self.factory.create(parent=parent, request=request)
        logger.info(f"🪟 Popup {popup.surface_id} opened from {parent.surface_id} ({request.url or 'about:blank'})")
        return popup

    async def destroy(self, popup: BrowsingSurface, reason: Optional[str] = None):
        popup.set_back_gesture_handler(None)
        popup.delegate = None
        try:
            await popup.close()
        except Exception as e:
            logger.warning(f"⚠️ Failed to close popup {popup.surface_id}: {e}")
        logger.info(f"🪟 Popup {popup.surface_id} closed{f' ({reason})' if reason else ''}")
