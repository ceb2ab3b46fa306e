from decimal import Decimal
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder

from src.engine import UnderwritingEngine


def get_engine(request: Request) -> UnderwritingEngine:
    """Dependency for the engine created in src/api/main.py:create_app"""
    return request.app.state.engine


def to_json(value: Any) -> Any:
    """Money goes out as floats, the shape the back office expects."""
    return jsonable_encoder(value, custom_encoder={Decimal: float})
