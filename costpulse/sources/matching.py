"""
Model identification: maps free-text catalog and meter names onto CanonicalModel.

Rules are evaluated top to bottom and the first match wins. A more specific
family must therefore be listed before the family it is a prefix of
("gpt-4o-mini" before "gpt-4o", "gpt-4o" before "gpt-4"). The gpt-4 family
token may not be followed by a digit or a dot, so later families such as
"gpt-4.1" stay unidentified. Text that matches no rule is unidentified and the
caller drops the record.
"""
import re
from dataclasses import dataclass

from costpulse.models import CanonicalModel, PriceDirection


@dataclass(frozen=True)
class MatchRule:
    pattern: re.Pattern
    model: CanonicalModel
    direction: PriceDirection | None = None

    def matches(self, text: str) -> bool:
        return bool(self.pattern.search(text))


def _rule(pattern: str, model: CanonicalModel, direction: PriceDirection | None = None) -> MatchRule:
    return MatchRule(re.compile(pattern, re.IGNORECASE), model, direction)


_IN = PriceDirection.INPUT
_OUT = PriceDirection.OUTPUT

# Retail catalog entries: "<meter name> <product name>", carrying an input/output direction.
PRICE_RULES: tuple[MatchRule, ...] = (
    _rule(r"gpt-4o-mini.*input", CanonicalModel.GPT_4O_MINI, _IN),
    _rule(r"gpt-4o-mini.*output", CanonicalModel.GPT_4O_MINI, _OUT),
    _rule(r"gpt-4o(?!-mini).*input", CanonicalModel.GPT_4O, _IN),
    _rule(r"gpt-4o(?!-mini).*output", CanonicalModel.GPT_4O, _OUT),
    _rule(r"gpt-4(?![.\d]).*turbo.*input", CanonicalModel.GPT_4_TURBO, _IN),
    _rule(r"gpt-4(?![.\d]).*turbo.*output", CanonicalModel.GPT_4_TURBO, _OUT),
    _rule(r"gpt-4(?![.\do])(?!.*turbo).*input", CanonicalModel.GPT_4, _IN),
    _rule(r"gpt-4(?![.\do])(?!.*turbo).*output", CanonicalModel.GPT_4, _OUT),
    _rule(r"gpt-35.*turbo.*input", CanonicalModel.GPT_35_TURBO, _IN),
    _rule(r"gpt-35.*turbo.*output", CanonicalModel.GPT_35_TURBO, _OUT),
)

# Cost Management meter names: model only, no direction.
METER_RULES: tuple[MatchRule, ...] = (
    _rule(r"gpt-4o-mini", CanonicalModel.GPT_4O_MINI),
    _rule(r"gpt-4o", CanonicalModel.GPT_4O),
    _rule(r"gpt-4-turbo|gpt-4 turbo", CanonicalModel.GPT_4_TURBO),
    _rule(r"gpt-4(?![.\do])", CanonicalModel.GPT_4),
    _rule(r"gpt-35-turbo|gpt-3\.5-turbo", CanonicalModel.GPT_35_TURBO),
)


def first_match(rules: tuple[MatchRule, ...], text: str) -> MatchRule | None:
    for rule in rules:
        if rule.matches(text):
            return rule
    return None


def identify_price_entry(meter_name: str | None, product_name: str | None) -> tuple[CanonicalModel, PriceDirection] | None:
    text = f"{meter_name or ''} {product_name or ''}".lower()
    rule = first_match(PRICE_RULES, text)
    if rule is None:
        return None
    return rule.model, rule.direction


def identify_meter(meter_name: str | None) -> CanonicalModel | None:
    if not meter_name:
        return None
    rule = first_match(METER_RULES, meter_name.lower())
    return rule.model if rule else None
