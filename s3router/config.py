"""Routing configuration: logical buckets, physical mappings and per-prefix rules."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Tuple, Union

import yaml

__all__ = [
    "Action",
    "Endpoint",
    "ConfigError",
    "BucketMapping",
    "Rule",
    "Config",
    "load",
]


class Action(str, Enum):
    """How an operation is routed between the primary and secondary stores."""

    PRIMARY = "primary"
    SECONDARY = "secondary"
    FALLBACK = "fallback"
    MIRROR = "mirror"
    BEST_EFFORT = "best-effort"


class Endpoint(str, Enum):
    """Names of the configured storage endpoints."""

    PRIMARY = "primary"
    SECONDARY = "secondary"


class ConfigError(ValueError):
    """Raised when a configuration document cannot be loaded."""


# Unknown action or endpoint names are kept as plain strings.
ActionName = Union[Action, str]
EndpointName = Union[Endpoint, str]


@dataclass
class BucketMapping:
    """Physical bucket names behind one logical bucket."""

    primary: str = ""
    secondary: str = ""


@dataclass
class Rule:
    """Routing rule for a bucket/prefix pair; ``prefix`` of "" matches every key."""

    bucket: str = ""
    prefix: str = ""
    actions: Dict[str, ActionName] = field(default_factory=dict)


@dataclass
class Config:
    """Compiled router configuration."""

    endpoints: Dict[EndpointName, str] = field(default_factory=dict)
    buckets: Dict[str, BucketMapping] = field(default_factory=dict)
    rules: List[Rule] = field(default_factory=list)

    def lookup(self, bucket: str, key: str, op: str) -> Tuple[Rule, ActionName]:
        """Return the first matching rule and its action for ``op``.

        Falls back to the rule's ``"*"`` action, and to ``Action.PRIMARY``
        with an empty rule when nothing matches.
        """
        for rule in self.rules:
            if rule.bucket != bucket and rule.bucket != "*":
                continue
            if rule.prefix and not key.startswith(rule.prefix):
                continue
            if op in rule.actions:
                return rule, rule.actions[op]
            return rule, rule.actions.get("*", "")
        return Rule(), Action.PRIMARY

    def is_logical_bucket(self, bucket: str) -> bool:
        """Whether ``bucket`` is a configured logical bucket."""
        return bucket in self.buckets

    def physical_buckets(self, logical: str) -> Tuple[str, str]:
        """Primary and secondary physical names for a logical bucket."""
        mapping = self.buckets.get(logical)
        if mapping is None:
            return logical, logical
        return mapping.primary, mapping.secondary


def _scalar(value: Any, what: str) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ConfigError(f"{what}: expected a scalar, got {type(value).__name__}")


def _mapping(value: Any, what: str) -> Mapping[Any, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"{what}: expected a mapping, got {type(value).__name__}")
    return value


def _action(name: str) -> ActionName:
    try:
        return Action(name)
    except ValueError:
        return name


def _endpoint(name: str) -> EndpointName:
    try:
        return Endpoint(name)
    except ValueError:
        return name


def _bucket_mapping(value: Any, name: str) -> BucketMapping:
    raw = _mapping(value, f"buckets.{name}")
    return BucketMapping(
        primary=_scalar(raw.get("primary"), f"buckets.{name}.primary"),
        secondary=_scalar(raw.get("secondary"), f"buckets.{name}.secondary"),
    )


def _compile_rules(raw_rules: Any) -> List[Rule]:
    if raw_rules is None:
        return []
    if not isinstance(raw_rules, list):
        raise ConfigError("rules: expected a list")
    rules: List[Rule] = []
    for entry in raw_rules:
        raw = _mapping(entry, "rules[]")
        bucket = _scalar(raw.get("bucket"), "rules[].bucket")
        for prefix, actions in _mapping(raw.get("prefix"), "rules[].prefix").items():
            prefix = _scalar(prefix, "rules[].prefix")
            rules.append(
                Rule(
                    bucket=bucket,
                    prefix="" if prefix == "*" else prefix,
                    actions={
                        _scalar(op, "operation"): _action(_scalar(act, "action"))
                        for op, act in _mapping(actions, f"prefix {prefix!r}").items()
                    },
                )
            )
    return rules


def load(stream: Any) -> Config:
    """Read a YAML configuration from a stream or string and compile it."""
    try:
        document = yaml.safe_load(stream)
    except yaml.YAMLError as exc:
        raise ConfigError(str(exc)) from exc
    if document is None:
        raise ConfigError("empty configuration")
    document = _mapping(document, "configuration")

    endpoints = {
        _endpoint(_scalar(name, "endpoint")): _scalar(url, f"endpoints.{name}")
        for name, url in _mapping(document.get("endpoints"), "endpoints").items()
    }
    buckets = {
        _scalar(name, "bucket"): _bucket_mapping(value, name)
        for name, value in _mapping(document.get("buckets"), "buckets").items()
    }
    rules = _compile_rules(document.get("rules"))

    if any("*" not in rule.actions for rule in rules):
        raise ConfigError('missing default "*" operation')

    # Bucket ascending, then prefix descending so longer prefixes win.
    rules.sort(key=lambda rule: rule.prefix, reverse=True)
    rules.sort(key=lambda rule: rule.bucket)

    return Config(endpoints=endpoints, buckets=buckets, rules=rules)