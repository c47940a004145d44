"""Column type helpers shared by the models."""

from enum import Enum
from typing import Type

from sqlalchemy import Enum as SAEnum


def str_enum(enum_cls: Type[Enum], length: int = 32) -> SAEnum:
    """Store a ``str`` enum by value in a VARCHAR column."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )
