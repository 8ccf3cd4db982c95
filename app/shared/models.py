"""
Shared Models

Base class for domain models stored as JSON documents in Redis.
Uses Pydantic v2 for validation on both the write and the read side,
so records never leave the store boundary as untyped maps.
"""

from typing import Optional, Type, TypeVar
from pydantic import BaseModel, ConfigDict, ValidationError

from app.core.logger import get_logger

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound="DomainModel")


class DomainModel(BaseModel):
    """
    Base domain model for all domain entities.

    Provides:
    - Proper Pydantic v2 configuration
    - JSON round-trip helpers used by the store layer
    """

    model_config = ConfigDict(
        populate_by_name=True,
        validate_assignment=False,
        # Use enum values in JSON
        use_enum_values=True,
    )

    def to_json(self) -> str:
        """Serialize model to a JSON string."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls: Type[ModelT], raw: Optional[str]) -> Optional[ModelT]:
        """
        Deserialize a JSON string.

        Malformed or missing payloads are treated as "no data".

        Args:
            raw: JSON string (or None)

        Returns:
            Model instance, or None if raw is empty or invalid
        """
        if not raw:
            return None
        try:
            return cls.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding malformed {cls.__name__} record: {e.error_count()} errors")
            return None
