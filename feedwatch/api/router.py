"""
API router - aggregates all route modules.
"""
from fastapi import APIRouter
from feedwatch.api.cron import router as cron_router
from feedwatch.api.filter_context import router as filter_context_router
from feedwatch.api.filter_queue import router as filter_queue_router
from feedwatch.api.health import router as health_router
from feedwatch.api.keywords import router as keywords_router
from feedwatch.api.posts import router as posts_router

api_router = APIRouter()
api_router.include_router(filter_queue_router)
api_router.include_router(filter_context_router)
api_router.include_router(keywords_router)
api_router.include_router(posts_router)
api_router.include_router(cron_router)
api_router.include_router(health_router)
