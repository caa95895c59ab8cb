"""Pydantic models describing upload destinations and finalized objects."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from gcs_uploader.const import DEFAULT_CONTENT_TYPE


class ObjectDestination(BaseModel):
    """Identity and resource fields of the object being written.

    Hash and etag fields are not carried; the store computes them from the
    uploaded bytes.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    bucket: str
    name: str
    content_type: str = Field(default=DEFAULT_CONTENT_TYPE, alias="contentType")
    content_disposition: str | None = Field(
        default=None, alias="contentDisposition"
    )
    cache_control: str | None = Field(default=None, alias="cacheControl")
    content_encoding: str | None = Field(default=None, alias="contentEncoding")
    content_language: str | None = Field(default=None, alias="contentLanguage")
    metadata: dict[str, str] | None = None

    def to_resource(self) -> dict[str, Any]:
        """Return the JSON object resource sent with the initiation request."""
        return self.model_dump(by_alias=True, exclude_none=True)


class UploadResult(BaseModel):
    """Metadata of a finalized object as returned by the store.

    Only ``size`` and ``md5_hash`` are read by the upload engine; the full
    resource is kept in ``resource``.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    bucket: str | None = None
    name: str | None = None
    generation: int | None = None
    metageneration: int | None = None
    size: int | None = None
    md5_hash: str | None = Field(default=None, alias="md5Hash")
    crc32c: str | None = None
    content_type: str | None = Field(default=None, alias="contentType")
    resource: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_resource(cls, resource: dict[str, Any] | None) -> "UploadResult":
        """Build a result from the store's JSON object resource.

        Args:
            resource: Parsed JSON body of the finalizing response.

        Returns:
            The ``UploadResult``; fields missing from the resource are None.
        """
        resource = dict(resource or {})
        fields = {k: v for k, v in resource.items() if k != "resource"}
        return cls.model_validate({**fields, "resource": resource})
