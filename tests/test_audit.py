from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from bop.core.audit import AuditRegistry, calculate_score, resolve_rules
from bop.core.errors import ProfileValidationError
from bop.core.fsroot import FsRoot
from bop.core.hardware import detect_hardware
from bop.core.model import Finding, Severity
from bop.core.rules import RULES


def _cp(cmd: list[str], rc: int = 0, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(cmd, rc, stdout=stdout, stderr=stderr)


def _finding(weight: int, severity: Severity = Severity.LOW) -> Finding:
    return Finding(severity, "Test", f"weight {weight}", weight=weight)


def test_score_bounds() -> None:
    assert calculate_score([]) == 100
    assert calculate_score([_finding(0)]) == 100
    assert calculate_score([_finding(10), _finding(10)]) == 0
    assert calculate_score([_finding(5), _finding(5)]) == 50
    assert calculate_score([_finding(3)]) == 70


def test_finding_weight_range() -> None:
    with pytest.raises(ValueError):
        _finding(11)
    with pytest.raises(ValueError):
        _finding(-1)


def test_resolve_rules_prefers_aggressive_variant() -> None:
    normal = resolve_rules(["cpu_power", "audio"])
    aggressive = resolve_rules(["cpu_power", "audio"], aggressive=True)
    assert [r.__name__ for r in normal] == ["cpu_power", "audio"]
    assert [r.__name__ for r in aggressive] == ["cpu_power_aggressive", "audio"]


def test_resolve_unknown_rule() -> None:
    with pytest.raises(ProfileValidationError, match="Unknown audit rule 'bogus'"):
        resolve_rules(["bogus"])


def test_framework_audit(monkeypatch: pytest.MonkeyPatch, framework_root: Path) -> None:
    def fake_run(cmd, check, capture_output, text):
        # every systemctl query reports "inactive"
        return _cp(cmd, rc=3)

    monkeypatch.setattr(subprocess, "run", fake_run)
    fs = FsRoot(framework_root)
    hw = detect_hardware(fs)

    findings = AuditRegistry(list(RULES.values())).run(hw, fs)
    severities = [f.severity for f in findings]
    assert severities == sorted(severities, reverse=True)
    assert findings[0].severity is Severity.HIGH

    descriptions = [f.description for f in findings]
    assert "EC wakeup not disabled - causes high sleep drain" in descriptions
    assert "1 unnecessary ACPI wakeup sources enabled" in descriptions
    assert "HDA Intel power save disabled" in descriptions
    assert not any(f.category == "Services" for f in findings)

    score = calculate_score(findings)
    assert 0 <= score <= 100
    assert score < 100


def test_services_rule_reports_active_tlp(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    def fake_run(cmd, check, capture_output, text):
        if cmd[:2] == ["systemctl", "is-active"] and cmd[-1] == "tlp.service":
            return _cp(cmd, rc=0)
        return _cp(cmd, rc=3)

    monkeypatch.setattr(subprocess, "run", fake_run)
    fs = FsRoot(tmp_path)
    findings = RULES["services"](detect_hardware(fs), fs)
    assert len(findings) == 1
    assert findings[0].severity is Severity.HIGH
    assert findings[0].description.startswith("tlp.service is active")


def test_network_rule_without_iw(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, files) -> None:
    files(tmp_path, {"sys/class/net/wlp1s0/wireless/.keep": ""})

    def fake_run(cmd, check, capture_output, text):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(subprocess, "run", fake_run)
    fs = FsRoot(tmp_path)
    findings = RULES["network_power"](detect_hardware(fs), fs)
    assert [f.severity for f in findings] == [Severity.INFO]
    assert "iw not available" in findings[0].description
