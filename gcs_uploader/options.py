"""Options accepted by upload operations."""

from dataclasses import dataclass
from enum import Enum

from gcs_uploader.const import MINIMUM_CHUNK_SIZE
from gcs_uploader.exceptions import ConfigurationError


class PredefinedAcl(str, Enum):
    """Predefined access control lists applied to the uploaded object."""

    AUTHENTICATED_READ = "authenticatedRead"
    BUCKET_OWNER_FULL_CONTROL = "bucketOwnerFullControl"
    BUCKET_OWNER_READ = "bucketOwnerRead"
    PRIVATE = "private"
    PROJECT_PRIVATE = "projectPrivate"
    PUBLIC_READ = "publicRead"


def check_chunk_size(chunk_size: int) -> int:
    """Ensure a chunk size is a positive multiple of ``MINIMUM_CHUNK_SIZE``.

    Args:
        chunk_size: Requested chunk size in bytes.

    Returns:
        The chunk size, unchanged.

    Raises:
        ConfigurationError: If the size is not a positive multiple.
    """
    if (
        isinstance(chunk_size, bool)
        or not isinstance(chunk_size, int)
        or chunk_size < MINIMUM_CHUNK_SIZE
        or chunk_size % MINIMUM_CHUNK_SIZE != 0
    ):
        raise ConfigurationError(
            f"Requested chunk size {chunk_size} is not a positive multiple of "
            f"{MINIMUM_CHUNK_SIZE}"
        )
    return chunk_size


@dataclass(frozen=True)
class UploadOptions:
    """Options for upload operations.

    The generation fields are preconditions: the object is only written if
    the existing object's generation (or metageneration) matches, or does not
    match, the given value. At most one field of each match/no-match pair may
    be set; this is checked by ``PreconditionSet`` before any request is made.

    Attributes:
        chunk_size: Bytes per request. Must be a positive multiple of
            ``MINIMUM_CHUNK_SIZE``; ``None`` uses the client default.
        if_generation_match: Require the existing generation to equal this.
        if_generation_not_match: Require the existing generation to differ.
        if_metageneration_match: Require the existing metageneration to equal
            this.
        if_metageneration_not_match: Require the existing metageneration to
            differ.
        predefined_acl: Predefined ACL applied to the new object.
    """

    chunk_size: int | None = None
    if_generation_match: int | None = None
    if_generation_not_match: int | None = None
    if_metageneration_match: int | None = None
    if_metageneration_not_match: int | None = None
    predefined_acl: PredefinedAcl | None = None

    def __post_init__(self) -> None:
        if self.chunk_size is not None:
            check_chunk_size(self.chunk_size)
        if self.predefined_acl is not None and not isinstance(
            self.predefined_acl, PredefinedAcl
        ):
            try:
                acl = PredefinedAcl(self.predefined_acl)
            except ValueError:
                raise ConfigurationError(
                    f"Unknown predefined ACL: {self.predefined_acl!r}"
                ) from None
            object.__setattr__(self, "predefined_acl", acl)
