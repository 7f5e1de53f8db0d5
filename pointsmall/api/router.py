"""
API Router - JSON Endpoints
"""
from fastapi import APIRouter

from pointsmall.api.orders import orders_router
from pointsmall.api.points import points_router
from pointsmall.api.coupons import coupons_router
from pointsmall.api.products import products_router

api_router = APIRouter()

api_router.include_router(orders_router)
api_router.include_router(points_router)
api_router.include_router(coupons_router)
api_router.include_router(products_router)
