from typing import Dict, Mapping

from ..models.schemas import COLOR_MODES, ColorMode, ThemeTokens

_COLOR_ROLES = ("bg", "text", "muted", "accent")


def _number(value: float) -> str:
    """Render a number the way CSS expects it: 18 not 18.0, 1.5 stays 1.5."""
    number = float(value)
    if number.is_integer():
        return str(int(number))
    return repr(number)


def _flag(enabled: bool, on: str, off: str) -> str:
    return on if enabled else off


def derive_variables(tokens: ThemeTokens, mode: ColorMode = "light") -> Dict[str, str]:
    """
    Project a token set onto CSS custom properties.

    The selected appearance mode feeds --bg/--text/--muted/--accent; every
    mode is also exposed under --color-<mode>-<role>. All other groups are
    mode-independent.

    Args:
        tokens: A normalized token set.
        mode: Appearance mode ("light", "dark" or "hc").

    Returns:
        Ordered mapping of custom-property names to string values.

    Raises:
        ValueError: If mode is not a known appearance mode.
    """
    if mode not in COLOR_MODES:
        raise ValueError(f"Unknown color mode {mode!r}; expected one of {', '.join(COLOR_MODES)}")

    fonts = tokens.fonts
    type_ = tokens.type
    links = tokens.links
    rules = tokens.rules
    active = getattr(tokens.colors, mode)

    variables: Dict[str, str] = {
        "--font-sans": fonts.sans,
        "--font-serif": fonts.serif,
        "--font-mono": fonts.mono,
        "--font-body": fonts.body,
        "--font-head": fonts.headings,
        "--font-code": fonts.code,
        "--font-optical-sizing": _flag(fonts.optical_sizing, "auto", "none"),
        "--font-ligatures": _flag(fonts.liga, "normal", "none"),
        "--base": f"{_number(type_.base_px)}px",
        "--leading": _number(type_.leading),
        "--max-ch": f"{_number(type_.max_ch)}ch",
        "--h-scale": _number(type_.h_scale),
        "--para-space": f"{_number(type_.para_space)}rem",
        "--link-underline": _flag(links.underline, "underline", "none"),
        "--link-offset": f"{_number(links.offset)}px",
        "--link-thickness": f"{_number(links.thickness)}px",
        "--hyphens": rules.hyphens,
        "--orphans": str(rules.orphans),
        "--widows": str(rules.widows),
    }
    for role in _COLOR_ROLES:
        variables[f"--{role}"] = getattr(active, role)
    for color_mode in COLOR_MODES:
        roles = getattr(tokens.colors, color_mode)
        for role in _COLOR_ROLES:
            variables[f"--color-{color_mode}-{role}"] = getattr(roles, role)
    return variables


def format_declarations(variables: Mapping[str, str]) -> str:
    """Render custom properties as inline style text: '--bg: #fff; --text: #111'."""
    return "; ".join(f"{name}: {value}" for name, value in variables.items())
