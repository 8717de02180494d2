"""Secret resource model."""

from typing import ClassVar

from pydantic import Field

from .meta import Resource


class Secret(Resource):
    """Opaque key/value credentials referenced by an issuer."""

    kind: ClassVar[str] = "Secret"

    data: dict[str, bytes] = Field(default_factory=dict)

    class Config:
        """Pydantic config."""

        ser_json_bytes = "base64"
        val_json_bytes = "base64"
