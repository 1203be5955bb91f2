from fastapi import APIRouter

from dqscore.routers import activity_log, data_quality, query_studio

api_router = APIRouter()
api_router.include_router(data_quality.router)
api_router.include_router(query_studio.router)
api_router.include_router(activity_log.router)

__all__ = ["api_router"]
