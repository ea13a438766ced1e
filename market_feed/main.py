import logging

from fastapi import FastAPI

from market_feed.api.routes import router as api_router
from market_feed.state import hub

settings = hub.settings

app = FastAPI(title="Market Feed API", version="0.1.0")
app.include_router(api_router)


@app.on_event("startup")
async def _startup():
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # Watchlist ticker stream + chart kline stream (seeded from REST)
    await hub.start()


@app.on_event("shutdown")
async def _shutdown():
    await hub.stop()
    hub.provider.close()


@app.get("/health")
def health():
    return {
        "status": "ok",
        "app_env": settings.app_env,
        "provider_config": settings.provider,
        "provider_loaded": hub.provider.__class__.__name__,
    }
