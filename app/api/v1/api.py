from fastapi import APIRouter
from app.api.v1 import billing, partners

api_router = APIRouter()

api_router.include_router(billing.router)
api_router.include_router(partners.router)
