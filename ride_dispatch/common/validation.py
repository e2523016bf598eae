# ride_dispatch/common/validation.py
"""
Разбор входных данных в pydantic модели.
"""

from __future__ import annotations

from typing import Any, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ride_dispatch.common.exceptions import InvalidPayload

M = TypeVar("M", bound=BaseModel)


def parse_payload(model_class: Type[M], data: M | Any) -> M:
    """
    Превращает словарь (или готовую модель) в экземпляр model_class.

    Raises:
        InvalidPayload: данные не прошли валидацию; ошибки pydantic в details["errors"]
    """
    if isinstance(data, model_class):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump()
    try:
        return model_class.model_validate(data)
    except ValidationError as e:
        raise InvalidPayload(
            f"Invalid {model_class.__name__} payload",
            errors=e.errors(include_url=False, include_context=False),
        ) from e
