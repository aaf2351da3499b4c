import logging
import os
import sys

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

# Add project root to path
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

# Import shared state
from shared.state import (
    event_bus,
    get_connectivity_monitor,
    get_phase_controller,
    get_resolver,
    get_scheduler,
    get_surface_factory,
)

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")


async def close_clients():
    """Close the HTTP client and the browser independently of each other."""
    for name, closer in (("resolver", get_resolver), ("browser", get_surface_factory)):
        try:
            await closer().aclose()
        except Exception as e:
            print(f"⚠️ Shutdown warning ({name}): {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    print("🚀 API Starting up...")
    scheduler = get_scheduler()
    scheduler.start()
    # Controller subscribes before the monitor publishes its first observation
    controller = get_phase_controller()
    controller.start()
    monitor = get_connectivity_monitor()
    monitor.start()

    yield

    print("🛑 API Shutting down...")
    await monitor.stop()
    await controller.stop()
    scheduler.shutdown()
    await close_clients()

app = FastAPI(lifespan=lifespan)

# Enable CORS for the shell UI
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173", "app://."],
    allow_origin_regex=r"http://localhost:(517\d|5555)",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Import and Include Routers ===
from routers import display as display_router
from routers import settings as settings_router
from routers import stream
app.include_router(display_router.router)
app.include_router(settings_router.router)
app.include_router(stream.router)


@app.get("/health")
async def health_check():
    return {
        "status": "ok",
        "version": "1.0.0",
        "phase": str(get_phase_controller().phase),
        "subscribers": event_bus.subscriber_count,
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api:app", host="0.0.0.0", port=8000, reload=True)
