from fastapi import APIRouter

from billing_engine.api.v1.endpoints import (
    projects,
    billing_rules,
    invoices,
    performance,
    price_lists,
)


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Projects ====================
api_router.include_router(
    projects.router,
    prefix="/projects",
    tags=["Projects"]
)

# ==================== Billing Rules ====================
api_router.include_router(
    billing_rules.router,
    prefix="/project-billing-rules",
    tags=["Billing Rules"]
)

api_router.include_router(
    billing_rules.master_router,
    prefix="/master-billing-rules",
    tags=["Billing Rules"]
)

# ==================== Performance Records ====================
api_router.include_router(
    performance.delivery_router,
    prefix="/deliveries",
    tags=["Performance Records"]
)

api_router.include_router(
    performance.labor_router,
    prefix="/labor-logs",
    tags=["Performance Records"]
)

# ==================== Price Lists ====================
api_router.include_router(
    price_lists.router,
    prefix="/price-lists",
    tags=["Price Lists"]
)

# ==================== Invoices ====================
api_router.include_router(
    invoices.router,
    prefix="/invoices",
    tags=["Invoices"]
)
