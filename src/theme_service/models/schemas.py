from datetime import datetime
from typing import Annotated, Any, List, Literal, Optional, get_args

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel


# --- Base Pydantic Model ---
class AppBaseModel(BaseModel):
    """Base Pydantic model with common configuration."""

    model_config = {
        "frozen": False,
        "extra": "forbid",  # Forbid extra fields not defined in the model
        "populate_by_name": True,  # Accept snake_case attribute names as well as camelCase aliases
        "alias_generator": to_camel,  # Wire/storage form uses camelCase keys (basePx, isDefault, ...)
    }


class TokenGroup(AppBaseModel):
    """
    Base for every token group. Groups are immutable and strictly typed:
    "18" is not a number and 1 is not a boolean.
    """

    model_config = ConfigDict(frozen=True, strict=True)


ColorMode = Literal["light", "dark", "hc"]
COLOR_MODES: tuple = get_args(ColorMode)

Hyphenation = Literal["none", "manual", "auto"]

FontStack = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=256)]
ColorValue = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=64)]


def _integral(value: Any) -> Any:
    """Accept 2.0 where a whole number is expected; 2.5 still fails."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


LineCount = Annotated[int, BeforeValidator(_integral), Field(ge=1, le=3)]


# --- Token Groups ---
class FontTokens(TokenGroup):
    """Font stacks per role plus rendering toggles."""

    sans: FontStack
    serif: FontStack
    mono: FontStack
    body: FontStack
    headings: FontStack
    code: FontStack
    optical_sizing: bool
    liga: bool


class TypeTokens(TokenGroup):
    """Typography parameters, each bounded to a closed range."""

    base_px: float = Field(ge=14, le=22, allow_inf_nan=False, description="Base font size in pixels.")
    leading: float = Field(ge=1.3, le=1.8, allow_inf_nan=False, description="Unitless line height.")
    max_ch: float = Field(ge=60, le=90, allow_inf_nan=False, description="Maximum measure in ch.")
    h_scale: float = Field(ge=1.1, le=1.35, allow_inf_nan=False, description="Heading scale factor.")
    para_space: float = Field(ge=0, le=1.2, allow_inf_nan=False, description="Paragraph spacing in rem.")


class ColorRoles(TokenGroup):
    """Semantic colors for one appearance mode."""

    bg: ColorValue
    text: ColorValue
    muted: ColorValue
    accent: ColorValue


class ColorTokens(TokenGroup):
    """Color roles for every appearance mode."""

    light: ColorRoles
    dark: ColorRoles
    hc: ColorRoles


class LinkTokens(TokenGroup):
    """Visual treatment of hyperlinks."""

    underline: bool
    offset: float = Field(ge=0, le=16, allow_inf_nan=False, description="Underline offset in pixels.")
    thickness: float = Field(ge=1, le=6, allow_inf_nan=False, description="Underline thickness in pixels.")


class RuleTokens(TokenGroup):
    """Text layout rules."""

    hyphens: Hyphenation
    orphans: LineCount
    widows: LineCount


class ThemeTokens(TokenGroup):
    """
    A complete, valid token set. Partial token objects only exist transiently
    as normalizer input; everything stored or rendered is a ThemeTokens.
    """

    fonts: FontTokens
    type: TypeTokens
    colors: ColorTokens
    links: LinkTokens
    rules: RuleTokens


class NormalizeResult(AppBaseModel):
    """Outcome of a strict acceptance check."""

    tokens: ThemeTokens
    valid: bool
    issues: List[str] = Field(
        default_factory=list,
        description="Dotted paths of fields that were dropped or replaced by defaults.",
    )


# --- Theme Records ---
class ThemeRecord(AppBaseModel):
    """One named, ownable visual configuration as persisted by a repository."""

    id: str
    name: str
    tokens: ThemeTokens
    is_default: bool = False
    owner_id: str
    created_at: datetime
    updated_at: datetime


class ThemeDeleteResult(AppBaseModel):
    """Outcome of deleting a theme."""

    deleted_id: str
    promoted_id: Optional[str] = Field(
        default=None,
        description="Theme promoted to default because the deleted theme was the default.",
    )
