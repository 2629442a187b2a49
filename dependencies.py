"""
FastAPI dependencies that hand the storage, gateway and membership service to routes
"""
from typing import AsyncGenerator

from fastapi import Depends, Request

from crud.sql_storage import SqlStorage
from crud.storage import MembershipStorage
from database import AsyncSessionLocal
from services.gateway import PaymentGateway
from services.membership_service import MembershipService


async def get_storage(request: Request) -> AsyncGenerator[MembershipStorage, None]:
    """
    Yield the storage for one request.

    The in-memory store lives on app.state for the whole process. Without one,
    each request gets a SqlStorage over its own session, committed when the
    route returns and rolled back if it raises.
    """
    storage = getattr(request.app.state, "storage", None)
    if storage is not None:
        yield storage
        return

    async with AsyncSessionLocal() as session:
        try:
            yield SqlStorage(session, request.app.state.catalog)
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_gateway(request: Request) -> PaymentGateway:
    return request.app.state.gateway


def get_membership_service(
    request: Request,
    storage: MembershipStorage = Depends(get_storage),
    gateway: PaymentGateway = Depends(get_gateway),
) -> MembershipService:
    return MembershipService(storage, gateway, currency=request.app.state.settings.currency)
