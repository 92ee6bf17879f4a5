"""Rule registry (rules as data, checkers as code)."""

from .registry import RuleRegistry, RuleSetStore, find_dependency_cycle, ingest, ruleset_from_dict
from .schema import Category, CheckSpec, Rule, RuleSet, ScopePredicate, Severity

__all__ = [
    "Category",
    "CheckSpec",
    "Rule",
    "RuleRegistry",
    "RuleSet",
    "RuleSetStore",
    "ScopePredicate",
    "Severity",
    "find_dependency_cycle",
    "ingest",
    "ruleset_from_dict",
]
