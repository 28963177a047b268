from cardkeeper.api.health import router as health_router
from cardkeeper.api.inventory import router as inventory_router
from cardkeeper.api.issuance import router as issuance_router
from cardkeeper.api.maintenance import router as maintenance_router

__all__ = [
    "health_router",
    "inventory_router",
    "issuance_router",
    "maintenance_router",
]
