"""Named crawl-policy rule sets loaded from YAML."""
from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator


class Rule(BaseModel):
    """One policy entry; rules without a pattern apply to every domain."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str = Field(min_length=1)
    description: str
    pattern: Optional[re.Pattern] = None
    action: str = Field(pattern=r"^(allow|block|modify|validate)$")
    notes: Optional[str] = None

    @field_validator("pattern", mode="before")
    @classmethod
    def _compile(cls, value: object) -> Optional[re.Pattern]:
        if value is None or isinstance(value, re.Pattern):
            return value
        try:
            return re.compile(str(value))
        except re.error as exc:
            raise ValueError(f"Invalid pattern {value!r}: {exc}") from exc

    def matches(self, host: str) -> bool:
        return self.pattern is not None and self.pattern.search(host) is not None


@dataclass(frozen=True)
class RuleDecision:
    allowed: bool
    rule_id: Optional[str] = None
    reason: Optional[str] = None


def matching_rules(rules: Iterable[Rule], host: str) -> List[Rule]:
    return [rule for rule in rules if rule.matches(host)]


class RulePolicy:
    """Eligibility hook consulted by the crawl executor before fetching.

    Block rules win over everything, then every ``validate`` rule scopes the
    allowed domains (a host must match at least one). Pattern-less rules are
    informational here: the only one shipped, HTTPS enforcement, is already
    guaranteed by the https-only fetch. ``modify`` rules are not acted on.
    """

    def __init__(self, rules: Iterable[Rule]) -> None:
        self._rules = list(rules)

    @property
    def rules(self) -> List[Rule]:
        return list(self._rules)

    def evaluate(self, host: str) -> RuleDecision:
        host = host.strip().lower()
        for rule in self._rules:
            if rule.action == "block" and rule.matches(host):
                return RuleDecision(allowed=False, rule_id=rule.id, reason=rule.description)
        validators = [rule for rule in self._rules if rule.action == "validate" and rule.pattern is not None]
        if validators and not any(rule.matches(host) for rule in validators):
            first = validators[0]
            return RuleDecision(allowed=False, rule_id=first.id, reason=first.description)
        allowed_by = next((rule for rule in self._rules if rule.action == "allow" and rule.matches(host)), None)
        return RuleDecision(allowed=True, rule_id=allowed_by.id if allowed_by else None)


class RuleRegistry:
    """Rule sets keyed by name, with ``include`` lists resolved at load time."""

    def __init__(self, rulesets: Dict[str, List[Rule]]) -> None:
        self._rulesets = rulesets

    @classmethod
    def load(cls, root: Path) -> "RuleRegistry":
        raw: Dict[str, dict] = {}
        if root.exists():
            for path in sorted(root.glob("*.yaml")):
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if not isinstance(data, dict):
                    raise ValueError(f"Rule file {path.name} must contain a mapping")
                raw[str(data.get("name") or path.stem)] = data
        resolved: Dict[str, List[Rule]] = {}
        for name in raw:
            resolved[name] = cls._resolve(name, raw, resolved, stack=())
        return cls(resolved)

    @classmethod
    def _resolve(cls, name: str, raw: Dict[str, dict], resolved: Dict[str, List[Rule]], stack: tuple) -> List[Rule]:
        if name in resolved:
            return resolved[name]
        if name in stack:
            raise ValueError(f"Circular rule set include: {' -> '.join(stack + (name,))}")
        if name not in raw:
            raise ValueError(f"Unknown rule set in include: {name}")
        data = raw[name]
        rules = [Rule(**item) for item in data.get("rules", [])]
        for included in data.get("include", []) or []:
            rules.extend(cls._resolve(str(included), raw, resolved, stack + (name,)))
        resolved[name] = rules
        return rules

    def names(self) -> List[str]:
        return sorted(self._rulesets)

    def get_ruleset(self, name: str) -> List[Rule]:
        return list(self._rulesets.get(name, []))

    def policy(self, name: str) -> RulePolicy:
        return RulePolicy(self.get_ruleset(name))
