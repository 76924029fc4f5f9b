# pharmapos/api/router.py
from fastapi import APIRouter

from pharmapos.api import (
    routes_sales,
    routes_batches,
    routes_stock,
    routes_notifications,
    routes_jobs,
    routes_dashboard,
)

api_router = APIRouter()

api_router.include_router(routes_sales.router)
api_router.include_router(routes_batches.router)
api_router.include_router(routes_stock.router)
api_router.include_router(routes_notifications.router)
api_router.include_router(routes_jobs.router)
api_router.include_router(routes_dashboard.router)
