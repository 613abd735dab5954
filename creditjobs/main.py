"""
Main FastAPI application for the credit-settled job gateway.
Serves jobs, account credits, health and metrics.
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from creditjobs.api.routes import credits, health, jobs
from creditjobs.core.config import settings
from creditjobs.core.logging import configure_logging
from creditjobs.utils.metrics import router as metrics_router

configure_logging()

app = FastAPI(
    title="Credit Jobs API",
    description="Runs paid generation jobs against external providers and settles credits",
    version="1.0.0",
)

# CORS
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# Routers
app.include_router(health.router, tags=["health"])
app.include_router(jobs.router)
app.include_router(credits.router)
app.include_router(metrics_router)
