# Shared State Module
# This module holds the process-wide core instances shared across all routers

from pathlib import Path

from config.settings_loader import get_state_file
from core.event_bus import EventBus

# Project root for path resolution in routers
PROJECT_ROOT = Path(__file__).parent.parent

# Every producer (routers, monitor, scheduled jobs) and consumer
# (phase controller, SSE stream) talks through this one bus
event_bus = EventBus()

# === Lazy-loaded dependencies ===
# These will be initialized when first accessed or during api.py lifespan

_app_state = None

def get_app_state():
    """Get the AppStateStore backed by the JSON state file."""
    global _app_state
    if _app_state is None:
        from core.store import AppStateStore, JsonFileStore
        _app_state = AppStateStore(JsonFileStore(get_state_file()))
    return _app_state

_scheduler = None

def get_scheduler():
    global _scheduler
    if _scheduler is None:
        from core.scheduler import SchedulerService
        _scheduler = SchedulerService()
    return _scheduler

_resolver = None

def get_resolver():
    global _resolver
    if _resolver is None:
        from core.remote_config import RemoteConfigResolver
        _resolver = RemoteConfigResolver(get_app_state())
    return _resolver

_connectivity_monitor = None

def get_connectivity_monitor():
    global _connectivity_monitor
    if _connectivity_monitor is None:
        from core.connectivity import ConnectivityMonitor
        _connectivity_monitor = ConnectivityMonitor(event_bus)
    return _connectivity_monitor

_surface_factory = None

def get_surface_factory():
    """Playwright factory. Chromium is only launched when the first session opens."""
    global _surface_factory
    if _surface_factory is None:
        from core.surfaces.playwright_surface import PlaywrightSurfaceFactory
        _surface_factory = PlaywrightSurfaceFactory()
    return _surface_factory

_phase_controller = None

def get_phase_controller():
    """Get the PhaseController, wiring it to the shared instances above."""
    global _phase_controller
    if _phase_controller is None:
        from core.cookies import CookiePersistence
        from core.phase_controller import PhaseController
        from core.session_tracker import SessionTracker

        state = get_app_state()

        def session_factory():
            return SessionTracker(get_surface_factory(), CookiePersistence(state))

        _phase_controller = PhaseController(
            event_bus,
            state,
            get_resolver(),
            get_scheduler(),
            session_factory=session_factory,
        )
    return _phase_controller
