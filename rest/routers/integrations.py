"""Warehouse integration management (admins only)."""

import logging

from fastapi import APIRouter

from rest.config.common import DataResponse
from rest.routers.deps import AdminSubject, Warehouse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations", tags=["Integrations"])


@router.get("/warehouse/status", response_model=DataResponse)
async def warehouse_status(subject_id: AdminSubject, warehouse: Warehouse):
    """Configured backend, host and whether credentials are present."""
    return DataResponse(data=warehouse.status())


@router.post("/warehouse/reset", response_model=DataResponse)
async def reset_warehouse(subject_id: AdminSubject, warehouse: Warehouse):
    """Drop the cached warehouse client; the next query builds a fresh one."""
    await warehouse.reset()
    logger.info(f"Warehouse client reset by {subject_id}")
    return DataResponse(data=warehouse.status())
