"""Object metadata shared by all reconciled resources."""

from datetime import datetime, timezone
from typing import ClassVar, Optional

from pydantic import BaseModel, Field, field_validator


def assume_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class NamespacedName(BaseModel):
    """Identity of a resource: namespace (empty when cluster-scoped) and name."""

    namespace: str = ""
    name: str

    class Config:
        """Pydantic config."""

        frozen = True

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name


class ObjectMeta(BaseModel):
    """Resource metadata."""

    name: str = Field(..., min_length=1)
    namespace: str = ""
    uid: Optional[str] = None
    resource_version: int = 0
    creation_timestamp: Optional[datetime] = None

    @field_validator("creation_timestamp")
    @classmethod
    def creation_timestamp_utc(cls, v):
        """Read naive timestamps as UTC."""
        return assume_utc(v)


class Resource(BaseModel):
    """Base class for stored resources."""

    kind: ClassVar[str] = ""

    metadata: ObjectMeta

    @property
    def key(self) -> NamespacedName:
        """Namespaced name of this resource."""
        return NamespacedName(namespace=self.metadata.namespace, name=self.metadata.name)
