import json

from theme_service.models.schemas import ThemeTokens
from theme_service.service.normalizer import (
    DEFAULT_TOKENS,
    dump_tokens,
    load_tokens,
    merge_tokens,
    normalize,
    try_normalize,
)


def _full_payload():
    return DEFAULT_TOKENS.model_dump(by_alias=True)


def test_normalize_non_object_input_yields_defaults():
    for raw in (None, "garbage", 42, [1, 2, 3], True):
        assert normalize(raw) == DEFAULT_TOKENS


def test_normalize_empty_object_yields_defaults():
    assert normalize({}) == DEFAULT_TOKENS


def test_out_of_range_base_size_falls_back_to_default():
    tokens = normalize({"type": {"basePx": 5}})
    assert tokens.type.base_px == 18
    assert tokens.type.leading == 1.5
    assert tokens.fonts == DEFAULT_TOKENS.fonts
    assert tokens.colors == DEFAULT_TOKENS.colors


def test_invalid_leaf_does_not_discard_valid_siblings():
    tokens = normalize({"type": {"basePx": 5, "leading": 1.6, "maxCh": 80}})
    assert tokens.type.base_px == 18
    assert tokens.type.leading == 1.6
    assert tokens.type.max_ch == 80


def test_wrong_types_are_not_coerced():
    tokens = normalize(
        {
            "type": {"basePx": "20"},
            "links": {"underline": 1},
            "rules": {"orphans": "3"},
        }
    )
    assert tokens.type.base_px == 18
    assert tokens.links.underline is True
    assert tokens.rules.orphans == 2


def test_non_finite_numbers_are_rejected():
    tokens = normalize({"type": {"leading": float("nan"), "hScale": float("inf")}})
    assert tokens.type.leading == 1.5
    assert tokens.type.h_scale == 1.2


def test_blank_font_stack_falls_back():
    tokens = normalize({"fonts": {"sans": "   ", "mono": "  'Fira Code', monospace  "}})
    assert tokens.fonts.sans == DEFAULT_TOKENS.fonts.sans
    assert tokens.fonts.mono == "'Fira Code', monospace"


def test_enum_tokens_only_accept_known_values():
    assert normalize({"rules": {"hyphens": "auto"}}).rules.hyphens == "auto"
    assert normalize({"rules": {"hyphens": "sometimes"}}).rules.hyphens == "manual"


def test_partial_color_mode_override():
    tokens = normalize({"colors": {"dark": {"accent": "#ff0000"}}})
    assert tokens.colors.dark.accent == "#ff0000"
    assert tokens.colors.dark.bg == DEFAULT_TOKENS.colors.dark.bg
    assert tokens.colors.light == DEFAULT_TOKENS.colors.light
    assert tokens.colors.hc == DEFAULT_TOKENS.colors.hc


def test_non_object_group_keeps_defaults():
    tokens = normalize({"type": "large", "colors": ["#000"], "links": {"offset": 6}})
    assert tokens.type == DEFAULT_TOKENS.type
    assert tokens.colors == DEFAULT_TOKENS.colors
    assert tokens.links.offset == 6


def test_snake_case_keys_are_accepted():
    tokens = normalize({"type": {"base_px": 20}, "fonts": {"optical_sizing": False}})
    assert tokens.type.base_px == 20
    assert tokens.fonts.optical_sizing is False


def test_normalize_is_idempotent():
    raw = {"type": {"basePx": 21, "leading": 9}, "colors": {"hc": {"bg": "#010101"}}, "junk": 1}
    once = normalize(raw)
    assert normalize(once) == once
    assert normalize(once.model_dump(by_alias=True)) == once
    assert normalize(json.loads(dump_tokens(once))) == once


def test_merge_tokens_overlays_onto_custom_base():
    base = normalize({"type": {"leading": 1.7}, "rules": {"widows": 3}})
    merged = merge_tokens(base, {"type": {"basePx": 20, "leading": 4}})
    assert merged.type.base_px == 20
    assert merged.type.leading == 1.7
    assert merged.rules.widows == 3


def test_try_normalize_accepts_complete_valid_input():
    result = try_normalize(_full_payload())
    assert result.valid is True
    assert result.issues == []
    assert result.tokens == DEFAULT_TOKENS


def test_try_normalize_flags_missing_groups():
    payload = _full_payload()
    del payload["links"]
    result = try_normalize(payload)
    assert result.valid is False
    assert any(issue.startswith("links") for issue in result.issues)
    assert result.tokens.links == DEFAULT_TOKENS.links


def test_try_normalize_flags_invalid_leaf_and_unknown_key():
    payload = _full_payload()
    payload["type"]["basePx"] = 5
    payload["sparkle"] = True
    result = try_normalize(payload)
    assert result.valid is False
    assert any(issue.startswith("type.basePx") for issue in result.issues)
    assert any(issue.startswith("sparkle") for issue in result.issues)
    assert result.tokens.type.base_px == 18


def test_try_normalize_partial_override_without_completeness():
    result = try_normalize({"type": {"leading": 1.4}}, require_complete=False)
    assert result.valid is True
    assert result.tokens.type.leading == 1.4


def test_try_normalize_non_object_is_invalid():
    result = try_normalize("nope")
    assert result.valid is False
    assert result.tokens == DEFAULT_TOKENS


def test_dump_and_load_tokens():
    tokens = normalize({"type": {"basePx": 16.5}, "links": {"underline": False}})
    payload = dump_tokens(tokens)
    assert json.loads(payload)["type"]["basePx"] == 16.5
    assert load_tokens(payload) == tokens
    assert load_tokens(payload.encode("utf-8")) == tokens


def test_load_tokens_tolerates_corrupt_payload():
    assert load_tokens("{not json") == DEFAULT_TOKENS
    assert load_tokens(None) == DEFAULT_TOKENS


def test_default_tokens_are_a_complete_token_set():
    assert isinstance(DEFAULT_TOKENS, ThemeTokens)
    assert DEFAULT_TOKENS.type.base_px == 18
    assert DEFAULT_TOKENS.colors.hc.accent == "#ffd500"


def test_whole_number_floats_accepted_for_line_counts():
    tokens = normalize({"rules": {"orphans": 3.0, "widows": 1.0}})
    assert tokens.rules.orphans == 3
    assert isinstance(tokens.rules.orphans, int)
    assert tokens.rules.widows == 1

    rejected = try_normalize({"rules": {"orphans": 2.5, "widows": True}}, require_complete=False)
    assert rejected.valid is False
    assert rejected.tokens.rules.orphans == 2
    assert rejected.tokens.rules.widows == 2
