"""
Selector safety checks.

Selectors imported from configuration codes end up driving DOM injection on
arbitrary pages, so each one is run through an ordered list of named rules
before it may be persisted. Every rule yields a RuleResult with its own id,
so callers (and tests) can tell exactly which rule fired.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import soupsieve

from .settings import SelectorLimits, WarningPolicy


class Verdict(str, Enum):
    OK = "ok"
    WARN = "warn"
    REJECT = "reject"


@dataclass(frozen=True)
class RuleResult:
    rule_id: str
    verdict: Verdict
    message: str
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SelectorReport:
    selector: str
    results: List[RuleResult]

    @property
    def rejections(self) -> List[RuleResult]:
        return [r for r in self.results if r.verdict == Verdict.REJECT]

    @property
    def warnings(self) -> List[RuleResult]:
        return [r for r in self.results if r.verdict == Verdict.WARN]

    @property
    def accepted(self) -> bool:
        return not self.rejections

    @property
    def verdict(self) -> Verdict:
        if self.rejections:
            return Verdict.REJECT
        return Verdict.WARN if self.warnings else Verdict.OK


RuleFn = Callable[[str, SelectorLimits, WarningPolicy], List[RuleResult]]


@dataclass(frozen=True)
class SelectorRule:
    rule_id: str
    check: RuleFn


# ---------------------------------------------------------------------------
# Symbol counting
# ---------------------------------------------------------------------------

SYMBOLS = {
    "descendant": "descendant combinators",
    "child": "child combinators (>)",
    "adjacent_sibling": "adjacent-sibling combinators (+)",
    "general_sibling": "general-sibling combinators (~)",
    "attribute": "attribute selectors ([)",
    "pseudo": "pseudo-selector colons (:)",
}
_COMBINATORS = {">": "child", "+": "adjacent_sibling", "~": "general_sibling"}


def count_symbols(selector: str) -> Dict[str, int]:
    """
    Count complexity-relevant symbols in a selector.

    Combinators and descendant whitespace only count outside brackets,
    parentheses and quoted strings, so `:nth-child(2n+1)` or `[title="a > b"]`
    add nothing. Whitespace around an explicit combinator is not a descendant
    combinator. `[` and `:` count at any nesting depth outside strings.
    """
    counts = {name: 0 for name in SYMBOLS}
    quote = None
    bracket = paren = 0
    gap = False
    prev = ","
    text = selector.strip()
    i = 0
    while i < len(text):
        ch = text[i]
        if quote:
            if ch == "\\":
                i += 1
            elif ch == quote:
                quote = None
            i += 1
            continue
        top = bracket == 0 and paren == 0
        if ch.isspace():
            if top:
                gap = True
            i += 1
            continue

        if ch in "\"'":
            quote = ch
        elif ch == "[":
            counts["attribute"] += 1
            bracket += 1
        elif ch == "]":
            bracket = max(bracket - 1, 0)
        elif ch == "(":
            paren += 1
        elif ch == ")":
            paren = max(paren - 1, 0)
        elif ch == ":" and bracket == 0:
            counts["pseudo"] += 1

        if top and ch in _COMBINATORS:
            counts[_COMBINATORS[ch]] += 1
            prev = ch
        elif top and ch == ",":
            prev = ","
        elif top:
            if gap and prev == "x":
                counts["descendant"] += 1
            prev = "x"
        if top:
            gap = False
        if ch == "\\":
            i += 1
        i += 1
    return counts


def _near_limit(limit: int, policy: WarningPolicy) -> int:
    return max(1, math.ceil(limit * policy.near_limit_ratio))


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

CONTROL_CHARACTERS = re.compile(r"[\r\n\t\x00]")

DISALLOWED_PATTERNS = [
    # matched anywhere in the text, ignoring case
    ("script", re.compile(r"script", re.I)),
    ("iframe", re.compile(r"iframe", re.I)),
    ("object", re.compile(r"object", re.I)),
    ("embed", re.compile(r"embed", re.I)),
    ("javascript:", re.compile(r"javascript\s*:", re.I)),
    ("vbscript:", re.compile(r"vbscript\s*:", re.I)),
    ("data:", re.compile(r"data\s*:", re.I)),
    ("expression(", re.compile(r"expression\s*\(", re.I)),
    ("behaviour:", re.compile(r"behaviou?r\s*:", re.I)),
    ("event handler", re.compile(r"(?<![\w-])on[a-z]+\s*=", re.I)),
    ("backtick", re.compile(r"`")),
    ("markup", re.compile(r"<")),
]


def rule_not_empty(selector, limits, policy):
    if not selector or not selector.strip():
        return [RuleResult("selector-empty", Verdict.REJECT, "Selector is empty.")]
    return []


def rule_length(selector, limits, policy):
    length = len(selector)
    if length > limits.max_length:
        return [RuleResult(
            "selector-too-long",
            Verdict.REJECT,
            f"Selector is {length} characters long; the limit is {limits.max_length}.",
            {"length": length, "limit": limits.max_length},
        )]
    if length >= _near_limit(limits.max_length, policy):
        return [RuleResult(
            "selector-too-long",
            Verdict.WARN,
            f"Selector is {length} characters long, close to the limit of {limits.max_length}.",
            {"length": length, "limit": limits.max_length},
        )]
    return []


def rule_control_characters(selector, limits, policy):
    if CONTROL_CHARACTERS.search(selector):
        return [RuleResult("control-characters", Verdict.REJECT, "Selector contains line breaks, tabs or NUL characters.")]
    return []


def rule_disallowed_patterns(selector, limits, policy):
    hits = [name for name, pattern in DISALLOWED_PATTERNS if pattern.search(selector)]
    if not hits:
        return []
    return [RuleResult(
        "disallowed-pattern",
        Verdict.REJECT,
        f"Selector contains disallowed patterns associated with script injection: {', '.join(hits)}.",
        {"patterns": hits},
    )]


def rule_symbol_limits(selector, limits, policy):
    counts = count_symbols(selector)
    results = []
    for name, label in SYMBOLS.items():
        limit = getattr(limits, name)
        count = counts[name]
        rule_id = f"{name.replace('_', '-')}-limit"
        details = {"count": count, "limit": limit}
        if count > limit:
            results.append(RuleResult(rule_id, Verdict.REJECT, f"Selector uses {count} {label}; the limit is {limit}.", details))
        elif count and count >= _near_limit(limit, policy):
            results.append(RuleResult(rule_id, Verdict.WARN, f"Selector uses {count} {label}, close to the limit of {limit}.", details))
    return results


# Pseudo-elements are valid in querySelector but not matchable, so the grammar
# check sees them as `:is(*)` once their name is known.
PSEUDO_ELEMENTS = frozenset({
    "after", "backdrop", "before", "cue", "file-selector-button", "first-letter",
    "first-line", "grammar-error", "highlight", "marker", "part", "placeholder",
    "selection", "slotted", "spelling-error", "target-text",
})
_PSEUDO_ELEMENT = re.compile(
    r"::(-?[a-z][\w-]*)(?:\([^)]*\))?|:(before|after|first-line|first-letter)(?![\w-])",
    re.I,
)


def _mask_pseudo_elements(selector: str):
    unknown = []

    def mask(m):
        name = (m.group(1) or m.group(2)).lower()
        if name not in PSEUDO_ELEMENTS and not name.startswith(("-webkit-", "-moz-")):
            unknown.append(name)
        return ":is(*)"

    return _PSEUDO_ELEMENT.sub(mask, selector), unknown


def rule_parses(selector, limits, policy):
    """Run the selector through a real CSS (Selectors Level 4) grammar."""
    text, unknown = _mask_pseudo_elements(selector)
    if unknown:
        return [RuleResult(
            "invalid-selector",
            Verdict.REJECT,
            f"Selector uses an unknown pseudo-element: ::{unknown[0]}.",
            {"pseudo_elements": unknown},
        )]
    try:
        soupsieve.compile(text)
    except soupsieve.SelectorSyntaxError as exc:
        reason = str(exc).splitlines()[0]
        return [RuleResult("syntax-error", Verdict.REJECT, f"Selector has a syntax error: {reason}")]
    except NotImplementedError as exc:
        return [RuleResult("invalid-selector", Verdict.REJECT, f"Selector is not a valid element selector: {exc}")]
    except ValueError:
        return [RuleResult("selector-error", Verdict.REJECT, "Selector could not be interpreted.")]
    return []


DEFAULT_RULES: List[SelectorRule] = [
    SelectorRule("selector-empty", rule_not_empty),
    SelectorRule("selector-too-long", rule_length),
    SelectorRule("control-characters", rule_control_characters),
    SelectorRule("disallowed-pattern", rule_disallowed_patterns),
    SelectorRule("symbol-limits", rule_symbol_limits),
    SelectorRule("selector-grammar", rule_parses),
]


def _escalate(results: List[RuleResult], policy: WarningPolicy) -> Optional[RuleResult]:
    if policy.escalate_at is None:
        return None
    borderline = [r.rule_id for r in results if r.verdict == Verdict.WARN]
    if len(borderline) < policy.escalate_at:
        return None
    return RuleResult(
        "borderline-escalation",
        Verdict.REJECT,
        f"Selector is close to {len(borderline)} complexity limits at once.",
        {"rules": borderline},
    )


def check_selector(
    selector: str,
    limits: Optional[SelectorLimits] = None,
    policy: Optional[WarningPolicy] = None,
    rules: Optional[List[SelectorRule]] = None,
) -> SelectorReport:
    """
    Run every rule against `selector` and collect the results.

    An empty selector stops at the first rule. The grammar rule only runs when
    nothing cheaper rejected the selector already.
    """
    limits = limits or SelectorLimits()
    policy = policy or WarningPolicy()
    rules = DEFAULT_RULES if rules is None else rules
    if not isinstance(selector, str):
        return SelectorReport(repr(selector), [RuleResult("selector-empty", Verdict.REJECT, "Selector must be text.")])

    results: List[RuleResult] = []
    for rule in rules:
        if rule.check is rule_parses and any(r.verdict == Verdict.REJECT for r in results):
            continue
        found = rule.check(selector, limits, policy)
        results.extend(found)
        if rule.check is rule_not_empty and found:
            break

    escalation = _escalate(results, policy)
    if escalation is not None:
        results.append(escalation)
    return SelectorReport(selector, results)


def is_selector_safe(selector: str, limits: Optional[SelectorLimits] = None) -> bool:
    return check_selector(selector, limits).accepted
