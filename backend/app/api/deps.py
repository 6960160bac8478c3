from __future__ import annotations

from typing import Generator

from fastapi import Request

from backend.app.core.config import Settings
from backend.app.db.introspection import SchemaCapabilities
from backend.services.transitions import OrderTransitionEngine


def get_db(request: Request) -> Generator:
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_capabilities(request: Request) -> SchemaCapabilities:
    return request.app.state.capabilities


def get_transition_engine(request: Request) -> OrderTransitionEngine:
    return request.app.state.transition_engine
