"""Typer CLI entrypoint."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Any, NoReturn

import typer

from bop.core import logs
from bop.core.auto import AutoOutcome
from bop.core.errors import BopError
from bop.core.journal import journal_to_dict
from bop.core.model import ApplyPlan, Finding
from bop.core.service import PowerService

app = typer.Typer(help="Audit and reversibly optimize laptop power consumption")
wake_app = typer.Typer(help="List and toggle ACPI wakeup sources")
auto_app = typer.Typer(
    help="Apply on battery and revert on AC (run by udev)",
    invoke_without_command=True,
)
app.add_typer(wake_app, name="wake")
app.add_typer(auto_app, name="auto")

_AUTO_MESSAGES = {
    AutoOutcome.APPLIED: "On battery: optimizations applied.",
    AutoOutcome.REVERTED: "On AC: optimizations reverted.",
    AutoOutcome.NOOP: "Nothing to do.",
    AutoOutcome.NO_PROFILE: "No hardware profile matched; nothing applied.",
    AutoOutcome.NO_AC_ADAPTER: "No AC adapter detected; nothing applied.",
    AutoOutcome.INHIBITED: "Sleep inhibitors are active; apply skipped.",
}


@dataclass(frozen=True)
class Options:
    json: bool = False
    aggressive: bool = False


def _options(ctx: typer.Context) -> Options:
    return ctx.obj if isinstance(ctx.obj, Options) else Options()


def _build_service() -> PowerService:
    service = PowerService()
    for warning in getattr(service, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


def _fail(exc: BopError) -> NoReturn:
    typer.echo(f"Error: {exc}", err=True)
    raise typer.Exit(code=1) from None


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


def _finding_dict(finding: Finding) -> dict[str, Any]:
    data = asdict(finding)
    data["severity"] = finding.severity.label
    return data


def _echo_plan(plan: ApplyPlan) -> None:
    if plan.sysfs_writes:
        typer.echo("Runtime sysfs changes:")
        for write in plan.sysfs_writes:
            typer.echo(f"  {write.description} ({write.path})")
    if plan.kernel_params:
        typer.echo("Kernel parameters (requires reboot):")
        for param in plan.kernel_params:
            typer.echo(f"  {param}")
    if plan.modprobe_configs:
        typer.echo("Modprobe configs:")
        for config in plan.modprobe_configs:
            typer.echo(f"  {config.filename}")
    if plan.services_to_disable:
        typer.echo("Services to disable:")
        for service in plan.services_to_disable:
            typer.echo(f"  {service}")
    if plan.acpi_wakeup_disable:
        typer.echo("ACPI wakeup sources to disable (resets on reboot):")
        for device in plan.acpi_wakeup_disable:
            typer.echo(f"  {device}")
    if plan.systemd_service and plan.sysfs_writes:
        typer.echo("A systemd unit will re-apply the sysfs changes at boot")


@app.callback()
def main(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Machine-readable output"),
    aggressive: bool = typer.Option(False, "--aggressive", help="Trade responsiveness for battery life"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging on stderr"),
) -> None:
    logs.configure(verbose)
    ctx.obj = Options(json=json_output, aggressive=aggressive)


@app.command("audit")
def audit(ctx: typer.Context) -> None:
    """Report power findings for this machine and a 0-100 score."""
    opts = _options(ctx)
    try:
        report = _build_service().audit(aggressive=opts.aggressive)
    except BopError as exc:
        _fail(exc)

    if opts.json:
        _echo_json(
            {
                "profile": report.profile.id,
                "score": report.score,
                "findings": [_finding_dict(f) for f in report.findings],
            }
        )
        return

    typer.echo(f"Profile: {report.profile.name} ({report.profile.id})")
    typer.echo(f"Score: {report.score}/100")
    if not report.findings:
        typer.echo("No findings")
    for finding in report.findings:
        typer.echo(f"[{finding.severity.label}] {finding.category}: {finding.description}")
        if finding.current or finding.recommended:
            typer.echo(f"    current: {finding.current or '-'} -> recommended: {finding.recommended or '-'}")


@app.command("apply")
def apply(
    ctx: typer.Context,
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would change without changing it"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Apply the optimizations; every change is journaled for revert."""
    opts = _options(ctx)
    try:
        service = _build_service()
        if dry_run:
            result = service.apply(aggressive=opts.aggressive, dry_run=True)
            if opts.json:
                _echo_json({"profile": result.profile.id, "trace": list(result.trace)})
                return
            for line in result.trace:
                typer.echo(line)
            if not result.trace:
                typer.echo("Nothing to apply")
            return

        profile, plan = service.preview(aggressive=opts.aggressive)
        if plan.is_empty():
            typer.echo("Nothing to apply")
            return
        if not opts.json:
            typer.echo(f"Profile: {profile.name} ({profile.id})")
            _echo_plan(plan)
        if not yes and not typer.confirm("Apply these changes?"):
            typer.echo("Aborted")
            return

        result = service.apply(aggressive=opts.aggressive)
    except BopError as exc:
        _fail(exc)

    journal = result.journal
    if opts.json:
        _echo_json(journal_to_dict(journal) if journal is not None else None)
        return
    if journal is None or journal.is_empty():
        typer.echo("Nothing changed")
        return
    typer.echo(f"Applied. Journal saved to {service.store.path}")
    if journal.kernel_params_added:
        typer.echo("Kernel parameter changes take effect after a reboot")


@app.command("revert")
def revert(ctx: typer.Context) -> None:
    """Undo everything recorded in the journal."""
    opts = _options(ctx)
    try:
        outcome = _build_service().revert()
    except BopError as exc:
        _fail(exc)

    if outcome is None:
        if opts.json:
            _echo_json({"complete": True, "steps": []})
        else:
            typer.echo("No saved state found. Nothing to revert.")
        return

    if opts.json:
        _echo_json(
            {
                "complete": outcome.complete,
                "reboot_required": outcome.reboot_required,
                "journal_path": outcome.journal_path,
                "steps": [asdict(step) for step in outcome.steps],
            }
        )
    else:
        for step in outcome.steps:
            if step.ok:
                typer.echo(f"{step.category}: restored {step.target}")
            else:
                typer.echo(f"{step.category}: failed {step.target}: {step.error}", err=True)
        if outcome.complete:
            typer.echo("Revert complete.")
        else:
            typer.echo(f"Revert incomplete; remaining work kept in {outcome.journal_path}. Run 'bop revert' again.")
        if outcome.reboot_required:
            typer.echo("Note: kernel parameter changes require a reboot to take effect.")
    if not outcome.complete:
        raise typer.Exit(code=1)


@app.command("status")
def status(ctx: typer.Context) -> None:
    """Check whether applied optimizations are still in force."""
    opts = _options(ctx)
    try:
        report = _build_service().status()
    except BopError as exc:
        _fail(exc)

    if report is None:
        if opts.json:
            _echo_json(None)
        else:
            typer.echo("No optimizations applied")
        return
    if opts.json:
        _echo_json(report.to_dict())
        return

    typer.echo(f"Applied at {report.timestamp}")
    for entry in report.sysfs:
        state = "active" if entry.active else f"drifted (now {entry.actual if entry.actual is not None else 'absent'})"
        typer.echo(f"  sysfs {entry.path} = {entry.expected}: {state}")
    for entry in report.acpi_wakeup:
        typer.echo(f"  wakeup {entry.device}: {'disabled' if entry.active else 'drifted'}")
    for entry in report.kernel_params:
        typer.echo(f"  kernel param {entry.param}: {'active' if entry.in_cmdline else 'pending reboot'}")
    for entry in report.services:
        typer.echo(f"  service {entry.name}: {'stopped' if entry.still_stopped else 'running again'}")
    for entry in (*report.units, *report.modprobe):
        typer.echo(f"  file {entry.path}: {'present' if entry.exists else 'missing'}")
    typer.echo(f"{report.active}/{report.total} active, {report.drifted} drifted")


@wake_app.command("list")
def wake_list(ctx: typer.Context) -> None:
    """List ACPI wakeup sources and attached USB devices."""
    opts = _options(ctx)
    try:
        controllers = _build_service().wake_controllers()
    except BopError as exc:
        _fail(exc)

    if opts.json:
        _echo_json([asdict(c) for c in controllers])
        return
    for ctrl in controllers:
        state = "enabled" if ctrl.enabled else "disabled"
        typer.echo(f"{ctrl.name} {state} {ctrl.pci_address or '-'}")
        for device in ctrl.devices:
            typer.echo(f"  {device}")


@wake_app.command("enable")
def wake_enable(controller: str) -> None:
    """Enable wake from CONTROLLER."""
    try:
        changed = _build_service().wake_enable(controller)
    except BopError as exc:
        _fail(exc)
    typer.echo(f"{controller}: {'enabled' if changed else 'already enabled'}")


@wake_app.command("disable")
def wake_disable(controller: str) -> None:
    """Disable wake from CONTROLLER."""
    try:
        changed = _build_service().wake_disable(controller)
    except BopError as exc:
        _fail(exc)
    typer.echo(f"{controller}: {'disabled' if changed else 'already disabled'}")


@wake_app.command("scan")
def wake_scan() -> None:
    """Enable wake on USB controllers with devices attached, disable it on empty ones."""
    try:
        result = _build_service().wake_scan()
    except BopError as exc:
        _fail(exc)
    for name in result.enabled:
        typer.echo(f"{name}: enabled")
    for name in result.disabled:
        typer.echo(f"{name}: disabled")
    if not result.changes:
        typer.echo("No changes")


@auto_app.callback()
def auto(ctx: typer.Context) -> None:
    """Switch optimizations with the power source."""
    if ctx.invoked_subcommand is not None:
        return
    logs.enable_system_log()
    try:
        outcome = _build_service().auto(aggressive=_options(ctx).aggressive)
    except BopError as exc:
        _fail(exc)
    typer.echo(_AUTO_MESSAGES[outcome])


@auto_app.command("enable")
def auto_enable(ctx: typer.Context) -> None:
    """Install the udev rule and switch once for the current power source."""
    aggressive = _options(ctx).aggressive
    try:
        service = _build_service()
        outcome = service.auto_enable(aggressive=aggressive)
    except BopError as exc:
        _fail(exc)
    typer.echo(f"Auto-switching enabled (mode: {'aggressive' if aggressive else 'normal'})")
    typer.echo(f"Rule installed at {service.settings.udev_rule_path}")
    typer.echo(_AUTO_MESSAGES[outcome])


@auto_app.command("disable")
def auto_disable() -> None:
    """Remove the udev rule."""
    try:
        service = _build_service()
        removed = service.auto_disable()
    except BopError as exc:
        _fail(exc)
    if removed:
        typer.echo(f"Auto-switching disabled. Removed {service.settings.udev_rule_path}")
    else:
        typer.echo("Auto-switching is not enabled (no udev rule found)")


@auto_app.command("status")
def auto_status(ctx: typer.Context) -> None:
    """Show whether auto-switching is installed and the current power source."""
    try:
        status = _build_service().auto_status()
    except BopError as exc:
        _fail(exc)

    if _options(ctx).json:
        _echo_json(asdict(status))
        return
    typer.echo(f"Enabled: {'yes' if status.enabled else 'no'}")
    if status.enabled:
        typer.echo(f"Mode: {status.mode}")
    if status.ac_found:
        typer.echo(f"Power source: {'AC' if status.on_ac else 'battery'}")
    else:
        typer.echo("Power source: no AC adapter detected")
    typer.echo(f"Optimizations: {'applied' if status.applied else 'not applied'}")


@app.command("snapshot")
def snapshot(
    output: str | None = typer.Option(None, "--output", "-o", help="Write to FILE instead of stdout"),
) -> None:
    """Capture the sysfs files bop reads, for bug reports and test fixtures."""
    try:
        snap = _build_service().snapshot()
        if output is None:
            _echo_json(asdict(snap))
            return
        snap.save(output)
    except BopError as exc:
        _fail(exc)
    typer.echo(f"Snapshot written to {output} ({len(snap.files)} files)")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
