from __future__ import annotations

from pathlib import Path

import pytest
from conftest import FakeSystemctl

from bop.core.engine import ApplyEngine
from bop.core.errors import BootloaderError, CommandError, ConflictingServiceError, NotRootError
from bop.core.fsroot import FsRoot
from bop.core.hardware import HardwareView
from bop.core.journal import JournalStore
from bop.core.model import ApplyPlan, KernelParamBackup, ModprobeConfig, PlannedWrite
from bop.core.revert import RevertEngine

EPP = "/sys/devices/system/cpu/cpu0/cpufreq/energy_performance_preference"
UNIT = "/etc/systemd/system/bop-powersave.service"


class FakeOps:
    def __init__(self, fs: FsRoot, store: JournalStore, *, fail_enable_unit: bool = False) -> None:
        self.fs = fs
        self.store = store
        self.fail_enable_unit = fail_enable_unit
        self.kernel_param_error: BootloaderError | None = None
        self.calls: list[tuple[str, object]] = []
        self.saved: list[int] = []

    def write_sysfs(self, path: str, value: str) -> None:
        self.calls.append(("write_sysfs", (path, value)))
        self.fs.write(path, value)

    def toggle_acpi_wakeup(self, device: str) -> None:
        self.calls.append(("toggle_acpi_wakeup", device))

    def add_kernel_params(self, params):
        self.calls.append(("add_kernel_params", tuple(params)))
        if self.kernel_param_error is not None:
            raise self.kernel_param_error
        return [KernelParamBackup(path="/boot/loader/entries/linux.conf", original_content="options quiet\n")]

    def restore_kernel_param_backups(self, backups) -> None:
        self.calls.append(("restore_kernel_param_backups", tuple(b.path for b in backups)))

    def remove_kernel_params(self, params) -> None:
        self.calls.append(("remove_kernel_params", tuple(params)))

    def disable_service(self, name: str) -> None:
        self.calls.append(("disable_service", name))

    def enable_service(self, name: str) -> None:
        self.calls.append(("enable_service", name))

    def generate_unit(self, view, plan) -> str:
        self.calls.append(("generate_unit", len(plan.sysfs_writes)))
        return UNIT

    def enable_unit(self) -> None:
        self.calls.append(("enable_unit", None))
        if self.fail_enable_unit:
            raise CommandError("systemctl enable bop-powersave.service exited with status 1")

    def remove_unit(self, path: str) -> None:
        self.calls.append(("remove_unit", path))

    def write_modprobe_config(self, config: ModprobeConfig) -> str:
        self.calls.append(("write_modprobe_config", config.filename))
        return f"/etc/modprobe.d/{config.filename}"

    def remove_modprobe_config(self, path: str) -> None:
        self.calls.append(("remove_modprobe_config", path))

    def restore_brightness(self, value: int) -> None:
        self.calls.append(("restore_brightness", value))

    def save_state(self, journal) -> None:
        self.saved.append(len(self.calls))
        self.store.save(journal)

    def clear_state(self) -> None:
        self.calls.append(("clear_state", None))
        self.store.clear()


def _plan(**kwargs) -> ApplyPlan:
    defaults = dict(
        sysfs_writes=(PlannedWrite(path=EPP, value="balance_power", description="Set cpu0 EPP"),),
        kernel_params=("acpi.ec_no_wakeup=1",),
        services_to_disable=("power-profiles-daemon.service",),
        systemd_service=True,
    )
    defaults.update(kwargs)
    return ApplyPlan(**defaults)


@pytest.fixture
def root(tmp_path: Path, files) -> Path:
    return files(tmp_path / "root", {EPP.lstrip("/"): "balance_performance\n"})


def _engine(root: Path, ops: FakeOps, systemctl: FakeSystemctl | None = None) -> ApplyEngine:
    return ApplyEngine(FsRoot(root), ops, systemctl=systemctl or FakeSystemctl(), root_probe=lambda: True)


def test_unit_enable_failure_keeps_all_four_entries(tmp_path: Path, root: Path) -> None:
    store = JournalStore(tmp_path / "state.json")
    ops = FakeOps(FsRoot(root), store, fail_enable_unit=True)

    with pytest.raises(CommandError):
        _engine(root, ops).apply(HardwareView(), _plan())

    journal = store.load()
    assert journal is not None
    assert [(c.path, c.original_value, c.new_value) for c in journal.sysfs_changes] == [
        (EPP, "balance_performance", "balance_power")
    ]
    assert journal.kernel_params_added == ["acpi.ec_no_wakeup=1"]
    assert [b.path for b in journal.kernel_param_backups] == ["/boot/loader/entries/linux.conf"]
    assert journal.services_disabled == ["power-profiles-daemon.service"]
    assert journal.systemd_units_created == [UNIT]

    revert_ops = FakeOps(FsRoot(root), store)
    outcome = RevertEngine(revert_ops, root_probe=lambda: True).revert(journal)

    assert outcome.complete
    assert outcome.reboot_required
    assert not store.exists()
    assert (root / EPP.lstrip("/")).read_text(encoding="utf-8") == "balance_performance"
    names = [name for name, _ in revert_ops.calls]
    assert names == [
        "write_sysfs",
        "restore_kernel_param_backups",
        "enable_service",
        "remove_unit",
        "clear_state",
    ]


def test_journal_is_fenced_before_each_stage(tmp_path: Path, root: Path) -> None:
    store = JournalStore(tmp_path / "state.json")
    ops = FakeOps(FsRoot(root), store)

    journal = _engine(root, ops).apply(HardwareView(), _plan())

    # sysfs, kernel params, services, unit
    assert len(ops.saved) == 4
    assert ops.calls[-1] == ("enable_unit", None)
    assert store.load() == journal


def test_no_journal_when_nothing_happened(tmp_path: Path, root: Path) -> None:
    store = JournalStore(tmp_path / "state.json")
    ops = FakeOps(FsRoot(root), store)
    ops.kernel_param_error = BootloaderError("no supported bootloader found")

    with pytest.raises(BootloaderError):
        _engine(root, ops).apply(HardwareView(), ApplyPlan(kernel_params=("acpi.ec_no_wakeup=1",)))

    assert not store.exists()


def test_partial_bootloader_backups_are_journaled(tmp_path: Path, root: Path) -> None:
    store = JournalStore(tmp_path / "state.json")
    ops = FakeOps(FsRoot(root), store)
    backup = KernelParamBackup(path="/etc/default/grub", original_content='GRUB_CMDLINE_LINUX_DEFAULT="quiet"\n')
    ops.kernel_param_error = BootloaderError("grub-mkconfig failed", backups=[backup])

    with pytest.raises(BootloaderError):
        _engine(root, ops).apply(HardwareView(), ApplyPlan(kernel_params=("acpi.ec_no_wakeup=1",)))

    journal = store.load()
    assert journal is not None
    assert journal.kernel_param_backups == [backup]
    assert journal.kernel_params_added == ["acpi.ec_no_wakeup=1"]


def test_reapply_keeps_pristine_original(tmp_path: Path, root: Path) -> None:
    store = JournalStore(tmp_path / "state.json")
    ops = FakeOps(FsRoot(root), store)
    engine = _engine(root, ops)
    plan = _plan(kernel_params=(), services_to_disable=(), systemd_service=False)

    first = engine.apply(HardwareView(), plan)
    second = engine.apply(
        HardwareView(),
        _plan(
            sysfs_writes=(PlannedWrite(path=EPP, value="power", description="Set cpu0 EPP"),),
            kernel_params=(),
            services_to_disable=(),
            systemd_service=False,
        ),
        prior=first,
    )

    assert [(c.original_value, c.new_value) for c in second.sysfs_changes] == [("balance_performance", "power")]
    assert [(c.original_value, c.new_value) for c in first.sysfs_changes] == [
        ("balance_performance", "balance_power")
    ]


def test_reapply_unit_replays_whole_journal(tmp_path: Path, root: Path, files) -> None:
    nmi = "/proc/sys/kernel/nmi_watchdog"
    files(root, {nmi.lstrip("/"): "1\n"})
    store = JournalStore(tmp_path / "state.json")
    ops = FakeOps(FsRoot(root), store)
    rendered: list[tuple[tuple[str, str], ...]] = []

    def generate_unit(view, plan) -> str:
        rendered.append(tuple((w.path, w.value) for w in plan.sysfs_writes))
        return UNIT

    ops.generate_unit = generate_unit
    engine = _engine(root, ops)

    first = engine.apply(HardwareView(), _plan(kernel_params=(), services_to_disable=()))
    engine.apply(
        HardwareView(),
        _plan(
            sysfs_writes=(PlannedWrite(path=nmi, value="0", description="Disable NMI watchdog"),),
            kernel_params=(),
            services_to_disable=(),
        ),
        prior=first,
    )

    assert rendered == [((EPP, "balance_power"),), ((EPP, "balance_power"), (nmi, "0"))]


def test_reapply_merges_backups(tmp_path: Path, root: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store = JournalStore(tmp_path / "state.json")
    ops = FakeOps(FsRoot(root), store)
    engine = _engine(root, ops)
    entry = KernelParamBackup(path="/boot/loader/entries/linux.conf", original_content="options quiet\n")
    fallback = KernelParamBackup(path="/boot/loader/entries/fallback.conf", original_content="options splash\n")
    refreshed = KernelParamBackup(path="/boot/loader/entries/linux.conf", original_content="options quiet a=1\n")
    results = iter([[entry, fallback], [refreshed]])
    monkeypatch.setattr(ops, "add_kernel_params", lambda params: next(results))

    first = engine.apply(HardwareView(), ApplyPlan(kernel_params=("acpi.ec_no_wakeup=1",)))
    second = engine.apply(HardwareView(), ApplyPlan(kernel_params=("rtc_cmos.use_acpi_alarm=1",)), prior=first)

    assert second.kernel_params_added == ["acpi.ec_no_wakeup=1", "rtc_cmos.use_acpi_alarm=1"]
    assert second.kernel_param_backups == [fallback, refreshed]


def test_wakeup_only_toggled_when_enabled(tmp_path: Path, root: Path, files) -> None:
    files(root, {"proc/acpi/wakeup": "XHC1\t  S4\t*enabled   pci:0000:c1:00.4\nXHC2\t  S4\t*disabled  pci:0000:c3:00.3\n"})
    store = JournalStore(tmp_path / "state.json")
    ops = FakeOps(FsRoot(root), store)

    journal = _engine(root, ops).apply(HardwareView(), ApplyPlan(acpi_wakeup_disable=("XHC1", "XHC2")))

    assert journal.acpi_wakeup_toggled == ["XHC1"]
    assert ("toggle_acpi_wakeup", "XHC2") not in ops.calls


def test_modprobe_configs_are_journaled(tmp_path: Path, root: Path) -> None:
    store = JournalStore(tmp_path / "state.json")
    ops = FakeOps(FsRoot(root), store)
    plan = ApplyPlan(modprobe_configs=(ModprobeConfig(filename="bop-audio.conf", content="options x\n"),))

    journal = _engine(root, ops).apply(HardwareView(), plan)
    assert journal.modprobe_files_created == ["/etc/modprobe.d/bop-audio.conf"]


def test_active_tlp_refuses_apply(tmp_path: Path, root: Path) -> None:
    store = JournalStore(tmp_path / "state.json")
    ops = FakeOps(FsRoot(root), store)

    with pytest.raises(ConflictingServiceError, match="sudo systemctl stop tlp"):
        _engine(root, ops, FakeSystemctl(active={"tlp.service"})).apply(HardwareView(), _plan())
    assert ops.calls == []


def test_apply_requires_root(tmp_path: Path, root: Path) -> None:
    ops = FakeOps(FsRoot(root), JournalStore(tmp_path / "state.json"))
    engine = ApplyEngine(FsRoot(root), ops, systemctl=FakeSystemctl(), root_probe=lambda: False)
    with pytest.raises(NotRootError, match="sudo bop apply"):
        engine.apply(HardwareView(), _plan())


def test_dry_run_touches_nothing(tmp_path: Path, root: Path) -> None:
    ops = FakeOps(FsRoot(root), JournalStore(tmp_path / "state.json"))
    trace = _engine(root, ops).dry_run(_plan())

    assert trace == [
        f"[dry-run] {EPP} -> balance_power (was: balance_performance)",
        "[dry-run] Add kernel params: acpi.ec_no_wakeup=1",
        "[dry-run] Disable service: power-profiles-daemon.service",
        "[dry-run] Generate and enable boot persistence unit",
    ]
    assert ops.calls == []
