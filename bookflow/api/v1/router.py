"""Versioned REST API for company dashboards"""
from fastapi import APIRouter

from bookflow.api.v1 import appointments, auth, catalog

api_v1_router = APIRouter()

# Login is the only route without a company token
api_v1_router.include_router(auth.router)

# Each of these checks the company's plan permissions
api_v1_router.include_router(appointments.router)
api_v1_router.include_router(catalog.router)
