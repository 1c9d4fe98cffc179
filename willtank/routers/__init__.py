"""API routers."""

from willtank.routers.contacts import router as contacts_router
from willtank.routers.death_verification import router as death_verification_router
from willtank.routers.dev import router as dev_router
from willtank.routers.executor import router as executor_router
from willtank.routers.internal import router as internal_router
from willtank.routers.wills import router as wills_router
