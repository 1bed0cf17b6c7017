from fastapi import FastAPI

from .requests import router as requests_router


def register_routes(app: FastAPI):
    app.include_router(requests_router, prefix="/v1")
