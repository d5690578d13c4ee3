from fastapi import APIRouter

from projectflow.api.routes import (
    projects,
    recurring,
    tasks,
)


api_router = APIRouter()
api_router.include_router(projects.router, prefix="/projects", tags=["projects"])
api_router.include_router(tasks.router, prefix="/tasks", tags=["tasks"])
api_router.include_router(recurring.router, prefix="/recurring", tags=["recurring"])
