"""Generation and metageneration preconditions for uploads."""

from dataclasses import dataclass

from gcs_uploader.exceptions import ConfigurationError
from gcs_uploader.options import UploadOptions


@dataclass(frozen=True)
class Unconstrained:
    """No precondition on the field."""


@dataclass(frozen=True)
class Match:
    """The existing value must equal ``value``."""

    value: int


@dataclass(frozen=True)
class NotMatch:
    """The existing value must differ from ``value``."""

    value: int


Precondition = Unconstrained | Match | NotMatch

UNCONSTRAINED = Unconstrained()


def _from_pair(
    field_name: str, match: int | None, not_match: int | None
) -> Precondition:
    """Collapse a match/no-match pair of optional values into one variant.

    Raises:
        ConfigurationError: If both values are set, or a value is not an
            integer.
    """
    if match is not None and not_match is not None:
        raise ConfigurationError(
            f"Cannot specify if_{field_name}_match and if_{field_name}_not_match "
            "in the same options"
        )
    for suffix, value in (("match", match), ("not_match", not_match)):
        if value is not None and (
            isinstance(value, bool) or not isinstance(value, int)
        ):
            raise ConfigurationError(
                f"if_{field_name}_{suffix} must be an integer, got {value!r}"
            )
    if match is not None:
        return Match(match)
    if not_match is not None:
        return NotMatch(not_match)
    return UNCONSTRAINED


@dataclass(frozen=True)
class PreconditionSet:
    """Preconditions attached to the upload initiation request."""

    generation: Precondition = UNCONSTRAINED
    metageneration: Precondition = UNCONSTRAINED

    @classmethod
    def from_values(
        cls,
        if_generation_match: int | None = None,
        if_generation_not_match: int | None = None,
        if_metageneration_match: int | None = None,
        if_metageneration_not_match: int | None = None,
    ) -> "PreconditionSet":
        """Build a set from raw optional values.

        Raises:
            ConfigurationError: If both members of a pair are set.
        """
        return cls(
            generation=_from_pair(
                "generation", if_generation_match, if_generation_not_match
            ),
            metageneration=_from_pair(
                "metageneration", if_metageneration_match, if_metageneration_not_match
            ),
        )

    @classmethod
    def from_options(cls, options: UploadOptions) -> "PreconditionSet":
        """Build and validate the preconditions carried by ``options``.

        Args:
            options: Upload options.

        Returns:
            The validated ``PreconditionSet``.

        Raises:
            ConfigurationError: If both members of a pair are set.
        """
        preconditions = cls.from_values(
            if_generation_match=options.if_generation_match,
            if_generation_not_match=options.if_generation_not_match,
            if_metageneration_match=options.if_metageneration_match,
            if_metageneration_not_match=options.if_metageneration_not_match,
        )
        preconditions.validate()
        return preconditions

    def validate(self) -> None:
        """Check every field holds a known precondition variant.

        Raises:
            ConfigurationError: If a field holds anything else.
        """
        for field_name in ("generation", "metageneration"):
            value = getattr(self, field_name)
            if not isinstance(value, (Unconstrained, Match, NotMatch)):
                raise ConfigurationError(
                    f"Invalid {field_name} precondition: {value!r}"
                )

    def encode(self) -> dict[str, str]:
        """Return the query parameters enforcing these preconditions.

        Unconstrained fields are omitted.
        """
        params: dict[str, str] = {}
        for field_name, value in (
            ("Generation", self.generation),
            ("Metageneration", self.metageneration),
        ):
            if isinstance(value, Match):
                params[f"if{field_name}Match"] = str(value.value)
            elif isinstance(value, NotMatch):
                params[f"if{field_name}NotMatch"] = str(value.value)
        return params

    def is_unconstrained(self) -> bool:
        """Return True when no precondition is set."""
        return not self.encode()
