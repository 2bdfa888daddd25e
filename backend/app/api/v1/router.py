from fastapi import APIRouter

from app.api.v1 import accounts, audit, employees, inventory, requests

api_router = APIRouter()

api_router.include_router(requests.router, prefix="/requests", tags=["requests"])
api_router.include_router(accounts.router, prefix="/accounts", tags=["accounts"])
api_router.include_router(inventory.router, prefix="/inventory", tags=["inventory"])
api_router.include_router(employees.router, prefix="/employees", tags=["employees"])
api_router.include_router(audit.router, prefix="/audit", tags=["audit"])
