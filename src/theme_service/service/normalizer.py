import json
import logging
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional, Type, Union

from pydantic import ValidationError

from ..config import settings
from ..models.schemas import (
    COLOR_MODES,
    ColorRoles,
    ColorTokens,
    FontTokens,
    LinkTokens,
    NormalizeResult,
    RuleTokens,
    ThemeTokens,
    TokenGroup,
    TypeTokens,
)

logger = logging.getLogger(settings.SERVICE_NAME + ".normalizer")


DEFAULT_TOKENS = ThemeTokens(
    fonts=FontTokens(
        sans="'Inter', 'Segoe UI', system-ui, -apple-system, sans-serif",
        serif="'Source Serif 4', 'Iowan Old Style', serif",
        mono="'JetBrains Mono', 'SFMono-Regular', 'Consolas', monospace",
        body="'Inter', 'Segoe UI', system-ui, -apple-system, sans-serif",
        headings="'Source Serif 4', 'Iowan Old Style', serif",
        code="'JetBrains Mono', 'SFMono-Regular', 'Consolas', monospace",
        optical_sizing=True,
        liga=True,
    ),
    type=TypeTokens(base_px=18, leading=1.5, max_ch=72, h_scale=1.2, para_space=0.6),
    colors=ColorTokens(
        light=ColorRoles(bg="#fbfbfb", text="#111111", muted="#5a5a5a", accent="#1f6feb"),
        dark=ColorRoles(bg="#0f1115", text="#f4f4f4", muted="#a0a0a0", accent="#4ea1ff"),
        hc=ColorRoles(bg="#000000", text="#ffffff", muted="#d6d6d6", accent="#ffd500"),
    ),
    links=LinkTokens(underline=True, offset=3, thickness=1),
    rules=RuleTokens(hyphens="manual", orphans=2, widows=2),
)


@lru_cache(maxsize=None)
def _field_lookup(model: Type[TokenGroup]) -> Dict[str, str]:
    """Map both camelCase aliases and attribute names to attribute names."""
    lookup: Dict[str, str] = {}
    for name, info in model.model_fields.items():
        lookup[name] = name
        if info.alias:
            lookup[info.alias] = name
    return lookup


def _alias(model: Type[TokenGroup], name: str) -> str:
    return model.model_fields[name].alias or name


def _join(path: str, key: Any) -> str:
    return f"{path}.{key}" if path else str(key)


def _known_items(
    raw: Mapping, model: Type[TokenGroup], path: str, issues: List[str]
) -> Dict[str, Any]:
    """Keep the keys the model declares; unknown keys are dropped and reported."""
    lookup = _field_lookup(model)
    known: Dict[str, Any] = {}
    for key, value in raw.items():
        name = lookup.get(key) if isinstance(key, str) else None
        if name is None:
            issues.append(f"{_join(path, key)}: unknown key dropped")
            continue
        known[name] = value
    return known


def _merge_leaves(
    base: TokenGroup, raw: Any, path: str, issues: List[str], require_complete: bool
) -> TokenGroup:
    """
    Validate each supplied leaf on its own and lay it over the base group.
    A leaf that fails validation keeps the base value; the rest still apply.
    """
    model = type(base)
    if not isinstance(raw, Mapping):
        issues.append(f"{path}: expected an object, kept defaults")
        return base

    supplied = _known_items(raw, model, path, issues)
    values = base.model_dump()
    for name in model.model_fields:
        leaf_path = _join(path, _alias(model, name))
        if name not in supplied:
            if require_complete:
                issues.append(f"{leaf_path}: missing, default used")
            continue
        try:
            values = model.model_validate({**values, name: supplied[name]}).model_dump()
        except (ValidationError, OverflowError) as e:
            reason = e.errors()[0]["msg"] if isinstance(e, ValidationError) else str(e)
            issues.append(f"{leaf_path}: {reason}, default used")
    return model.model_validate(values)


def _merge_group(
    base: TokenGroup,
    supplied: Dict[str, Any],
    name: str,
    issues: List[str],
    require_complete: bool,
) -> TokenGroup:
    if name not in supplied:
        if require_complete:
            issues.append(f"{name}: missing, defaults used")
        return base
    return _merge_leaves(base, supplied[name], name, issues, require_complete)


def _merge_colors(
    base: ColorTokens,
    supplied: Dict[str, Any],
    issues: List[str],
    require_complete: bool,
) -> ColorTokens:
    if "colors" not in supplied:
        if require_complete:
            issues.append("colors: missing, defaults used")
        return base
    raw = supplied["colors"]
    if not isinstance(raw, Mapping):
        issues.append("colors: expected an object, kept defaults")
        return base

    modes = _known_items(raw, ColorTokens, "colors", issues)
    merged: Dict[str, ColorRoles] = {}
    for mode in COLOR_MODES:
        current = getattr(base, mode)
        if mode not in modes:
            if require_complete:
                issues.append(f"colors.{mode}: missing, defaults used")
            merged[mode] = current
            continue
        merged[mode] = _merge_leaves(current, modes[mode], f"colors.{mode}", issues, require_complete)
    return ColorTokens(**merged)


def _merge(
    base: ThemeTokens, raw: Any, issues: List[str], require_complete: bool
) -> ThemeTokens:
    if isinstance(raw, ThemeTokens):
        return raw
    if not isinstance(raw, Mapping):
        issues.append(f"tokens: expected an object, got {type(raw).__name__}; kept defaults")
        return base

    supplied = _known_items(raw, ThemeTokens, "", issues)
    return ThemeTokens(
        fonts=_merge_group(base.fonts, supplied, "fonts", issues, require_complete),
        type=_merge_group(base.type, supplied, "type", issues, require_complete),
        colors=_merge_colors(base.colors, supplied, issues, require_complete),
        links=_merge_group(base.links, supplied, "links", issues, require_complete),
        rules=_merge_group(base.rules, supplied, "rules", issues, require_complete),
    )


def merge_tokens(base: ThemeTokens, raw_override: Any) -> ThemeTokens:
    """
    Apply an untrusted, possibly partial override on top of a valid token set.

    Only leaves that pass their own validation replace base values; unknown
    keys are dropped and structurally invalid groups keep the base group.
    """
    return _merge(base, raw_override, [], require_complete=False)


def normalize(raw_input: Any) -> ThemeTokens:
    """
    Convert untrusted input into a complete token set. Never raises.

    Args:
        raw_input: Anything. Mappings are merged onto DEFAULT_TOKENS leaf by
            leaf; every other value yields DEFAULT_TOKENS.

    Returns:
        A complete, schema-valid ThemeTokens.
    """
    return merge_tokens(DEFAULT_TOKENS, raw_input)


def try_normalize(
    raw_input: Any,
    *,
    base: Optional[ThemeTokens] = None,
    require_complete: bool = True,
) -> NormalizeResult:
    """
    Normalize and report whether the input was accepted without any correction.

    Args:
        raw_input: Untrusted token object.
        base: Token set the input is merged onto (DEFAULT_TOKENS when omitted).
        require_complete: When True, every group and leaf must be supplied for
            the input to count as valid. Pass False to check a partial override.

    Returns:
        NormalizeResult with the normalized tokens, the validity flag and the
        list of fields that were dropped or replaced.
    """
    issues: List[str] = []
    tokens = _merge(base or DEFAULT_TOKENS, raw_input, issues, require_complete)
    if issues:
        logger.debug(f"Token input needed {len(issues)} correction(s): {issues}")
    return NormalizeResult(tokens=tokens, valid=not issues, issues=issues)


def dump_tokens(tokens: ThemeTokens) -> str:
    """Serialize a token set to its persisted JSON form."""
    return tokens.model_dump_json(by_alias=True)


def load_tokens(payload: Union[str, bytes, Mapping, None]) -> ThemeTokens:
    """
    Decode persisted tokens and normalize them.
    Corrupt JSON degrades to DEFAULT_TOKENS instead of failing the read.
    """
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as e:
            logger.warning(f"Stored tokens are not valid JSON, using defaults: {e}")
            return DEFAULT_TOKENS
    return normalize(payload)
