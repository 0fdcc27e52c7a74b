# app/main.py
"""
Partner Billing - subscription and order-based billing service
Main Application Entry Point
"""
import logging
from pathlib import Path
from contextlib import asynccontextmanager

from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from app.core.config import settings
from app.api.v1.api import api_router

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ========================================
# DIRECTORIES
# ========================================
TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


# ========================================
# LIFESPAN EVENT
# ========================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""

    # ===== STARTUP =====
    routes_api = []
    for route in app.routes:
        if hasattr(route, 'methods') and hasattr(route, 'path'):
            methods = ', '.join(sorted(route.methods - {'HEAD', 'OPTIONS'}))
            if methods and route.path.startswith('/api/'):
                routes_api.append(f"  {methods:12} {route.path}")

    logger.info(f"🚀 {settings.PROJECT_NAME} started ({settings.ENVIRONMENT})")
    logger.info(f"Hasura endpoint: {settings.HASURA_GRAPHQL_ENDPOINT}")
    for line in sorted(set(routes_api)):
        logger.debug(line)

    yield

    # ===== SHUTDOWN =====
    logger.info("👋 Server stopped")


# ========================================
# CREATE APP
# ========================================
app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    lifespan=lifespan
)


# ========================================
# MIDDLEWARE - CORS
# ========================================
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ========================================
# API ROUTERS (prefix /api/v1)
# ========================================
app.include_router(api_router, prefix=settings.API_V1_STR)


# ========================================
# HTML ROUTES
# ========================================

@app.get("/health")
async def health():
    return {"status": "healthy", "app": "partner-billing"}


@app.get("/billing", response_class=HTMLResponse)
async def billing_page(request: Request):
    """
    Partner billing page - auth handled by JavaScript in the frontend
    """
    return templates.TemplateResponse(request, "billing.html", {"api_prefix": settings.API_V1_STR})
