"""Audit registry and scoring."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence

from bop.core.errors import ProfileValidationError
from bop.core.fsroot import FsRoot
from bop.core.hardware import HardwareView
from bop.core.model import Finding
from bop.core.rules import RULES, Rule

LOGGER = logging.getLogger(__name__)
MAX_WEIGHT = 10


def calculate_score(findings: Sequence[Finding]) -> int:
    """0-100 score; 100 means nothing left to optimize."""
    if not findings:
        return 100
    total = sum(f.weight for f in findings)
    ratio = total / (MAX_WEIGHT * len(findings))
    score = math.floor(100.0 * (1.0 - ratio) + 0.5)
    return max(0, min(100, score))


def sort_findings(findings: Iterable[Finding]) -> list[Finding]:
    return sorted(findings, key=lambda f: f.severity, reverse=True)


def resolve_rules(names: Iterable[str], *, aggressive: bool = False) -> list[Rule]:
    """Look up rule names, preferring ``<name>_aggressive`` variants in aggressive mode."""
    resolved: list[Rule] = []
    for name in names:
        if aggressive and f"{name}_aggressive" in RULES:
            name = f"{name}_aggressive"
        rule = RULES.get(name)
        if rule is None:
            available = ", ".join(sorted(RULES))
            raise ProfileValidationError(f"Unknown audit rule '{name}'. Available: {available}")
        resolved.append(rule)
    return resolved


class AuditRegistry:
    def __init__(self, rules: Sequence[Rule]) -> None:
        self.rules = list(rules)

    def run(self, hw: HardwareView, fs: FsRoot) -> list[Finding]:
        findings: list[Finding] = []
        for rule in self.rules:
            found = rule(hw, fs)
            LOGGER.debug("rule %s produced %d findings", rule.__name__, len(found))
            findings.extend(found)
        return sort_findings(findings)
