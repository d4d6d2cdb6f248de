from fastapi import APIRouter

from .endpoints.activity import router as activity_router
from .endpoints.caching import router as caching_router
from .endpoints.health import router as health_router
from .endpoints.history import router as history_router
from .endpoints.insights import router as insights_router
from .endpoints.interests import router as interests_router
from .endpoints.predictions import router as predictions_router
from .endpoints.recommendations import router as recommendations_router
from .endpoints.users import router as users_router

api_router = APIRouter()


@api_router.get("/")
async def root():
    return {"message": "Personalization API is running"}


api_router.include_router(recommendations_router)
api_router.include_router(history_router)
api_router.include_router(predictions_router)
api_router.include_router(activity_router)
api_router.include_router(insights_router)
api_router.include_router(interests_router)
api_router.include_router(users_router)
api_router.include_router(health_router)
api_router.include_router(caching_router)
