from __future__ import annotations
from fastapi import Request

from ..config import Settings
from ..services.code_store import CodeStore
from ..services.dispatcher import Dispatcher


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_code_store(request: Request) -> CodeStore:
    return request.app.state.code_store


def get_dispatcher(request: Request) -> Dispatcher:
    return request.app.state.dispatcher
