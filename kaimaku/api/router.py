"""API router - aggregates all endpoint routers."""

from fastapi import APIRouter

from kaimaku.api import auth, ratings, search

api_router = APIRouter()

api_router.include_router(auth.router, tags=["auth"])
api_router.include_router(ratings.router, tags=["ratings"])
api_router.include_router(search.router, tags=["search"])
