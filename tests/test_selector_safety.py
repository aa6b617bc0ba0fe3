import pytest

from trustline.selector_safety import (
    check_selector,
    count_symbols,
    is_selector_safe,
    Verdict,
)
from trustline.settings import SelectorLimits, WarningPolicy


def _rejected_ids(selector, **kwargs):
    return [r.rule_id for r in check_selector(selector, **kwargs).rejections]


@pytest.mark.parametrize("selector", [
    "#submit-button",
    ".chat-input",
    'div > button[type="submit"]',
    "form textarea:first-child",
    "li:nth-child(2n+1) a",
    "div:not(.a, .b)",
    "button:focus-visible",
    "input::placeholder",
    "div::before",
    "p:first-line",
    "li:is(.open, .active) > a",
    "[data-testid='composer']",
])
def test_plain_selectors_pass(selector):
    report = check_selector(selector)
    assert report.accepted, report.rejections
    assert report.verdict == Verdict.OK


def test_script_markup_is_a_pattern_violation():
    ids = _rejected_ids("<script>alert(1)</script>")
    assert "disallowed-pattern" in ids
    assert "syntax-error" not in ids


@pytest.mark.parametrize("selector", [
    "iframe",
    "div > object",
    "EMBED[src]",
    "a[href^='javascript:']",
    "a[href^='JavaScript :x']",
    "a[href^='vbscript:']",
    "img[src^='data:image']",
    "div[style*='expression(']",
    "div[onclick=x]",
    "div`",
    "#myscript",
    ".scripts",
    "div.script-wrapper",
    "x-script",
    "#embedded",
    ".iframes",
    "#objects",
    ".mydata:hover",
    ".description",
    ".embedded-card .objective",
    "#SubScript",
])
def test_injection_patterns_rejected(selector):
    assert "disallowed-pattern" in _rejected_ids(selector)


def test_descendant_limit():
    selector = " ".join(["div"] * 12)
    report = check_selector(selector)
    assert [r.rule_id for r in report.rejections] == ["descendant-limit"]
    assert "11" in report.rejections[0].message


@pytest.mark.parametrize("selector,rule_id", [
    ("a > b > c > d > e > f > g", "child-limit"),
    ("a + b + c + d + e", "adjacent-sibling-limit"),
    ("a ~ b ~ c ~ d ~ e", "general-sibling-limit"),
    ("a[b][c][d][e][f][g]", "attribute-limit"),
    ("a:hover:focus:active:first-child:last-child:empty", "pseudo-limit"),
])
def test_each_limit_has_its_own_reason(selector, rule_id):
    assert rule_id in _rejected_ids(selector)


def test_multiple_limits_reported_together():
    selector = "a > b > c > d > e > f > g + h + i + j + k"
    ids = _rejected_ids(selector)
    assert "child-limit" in ids
    assert "adjacent-sibling-limit" in ids


def test_malformed_selector_is_a_syntax_error():
    assert _rejected_ids("*[*=*]") == ["syntax-error"]


def test_unknown_pseudo_class_is_a_syntax_error():
    assert _rejected_ids("div:frobnicate") == ["syntax-error"]


def test_unknown_pseudo_element_is_invalid():
    report = check_selector("div::frobnicate")
    assert [r.rule_id for r in report.rejections] == ["invalid-selector"]
    assert report.rejections[0].details == {"pseudo_elements": ["frobnicate"]}


def test_length_cap():
    selector = "#" + "a" * 500
    assert _rejected_ids(selector) == ["selector-too-long"]
    assert is_selector_safe("#" + "a" * 499)


@pytest.mark.parametrize("selector", ["", "   "])
def test_empty_selector(selector):
    report = check_selector(selector)
    assert [r.rule_id for r in report.results] == ["selector-empty"]


def test_control_characters():
    assert "control-characters" in _rejected_ids("div\nspan")
    assert "control-characters" in _rejected_ids("div\x00")


def test_count_symbols_ignores_nested_and_quoted_text():
    counts = count_symbols('li:nth-child(2n+1) > a[title="x > y ~ z"]')
    assert counts["adjacent_sibling"] == 0
    assert counts["general_sibling"] == 0
    assert counts["child"] == 1
    assert counts["descendant"] == 0
    assert counts["attribute"] == 1
    assert counts["pseudo"] == 1


def test_count_symbols_descendants():
    assert count_symbols("div > p")["descendant"] == 0
    assert count_symbols("  a b\tc  ")["descendant"] == 2
    assert count_symbols("a, b c")["descendant"] == 1
    assert count_symbols("a:not(.x .y) b")["descendant"] == 1


def test_near_limit_produces_warning_only():
    report = check_selector(" ".join(["div"] * 9))
    assert report.accepted
    assert report.verdict == Verdict.WARN
    assert [r.rule_id for r in report.warnings] == ["descendant-limit"]


def test_warning_ratio_is_configurable():
    selector = " ".join(["div"] * 9)
    assert not check_selector(selector, policy=WarningPolicy(near_limit_ratio=1.0)).warnings


def test_borderline_escalation_policy():
    selector = "a b c d e f g h i[x][y][z][w]"
    relaxed = check_selector(selector)
    assert relaxed.accepted
    assert {r.rule_id for r in relaxed.warnings} == {"descendant-limit", "attribute-limit"}

    strict = check_selector(selector, policy=WarningPolicy(escalate_at=2))
    assert [r.rule_id for r in strict.rejections] == ["borderline-escalation"]


def test_limits_are_configurable():
    limits = SelectorLimits(child=1)
    assert "child-limit" in _rejected_ids("a > b > c", limits=limits)
    assert is_selector_safe("a > b > c")
