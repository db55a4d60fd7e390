"""
Main FastAPI application bootstrap.
Validates configuration and includes routers.
"""
import logging

from fastapi import FastAPI

from deploycost.core.config import config
from deploycost.api.cost_analysis import router as cost_analysis_router


logger = logging.getLogger(__name__)

# Validate configuration on startup
try:
    config.validate()
except ValueError as error:
    raise RuntimeError(f"Configuration error: {error}") from error

logger.info(
    "Pricing endpoint %s, default pricing region %s, cache %s (ttl=%ss)",
    config.PRICING_API_BASE_URL,
    config.DEFAULT_PRICING_REGION,
    "disabled" if config.PRICING_CACHE_DISABLED else config.PRICING_CACHE_FILE,
    config.PRICING_CACHE_TTL_SECONDS
)


app = FastAPI(
    title="Deployment Cost Analysis",
    description="Cost and quota feasibility checks for multi-region Azure deployments",
)

app.include_router(cost_analysis_router)
