from __future__ import annotations

from pathlib import Path

from conftest import FakeSystemctl

from bop.core.fsroot import FsRoot
from bop.core.journal import new_journal
from bop.core.model import SysfsChange
from bop.core.status import StatusChecker, wakeup_disabled

EPP = "/sys/devices/system/cpu/cpu0/cpufreq/energy_performance_preference"
NMI = "/proc/sys/kernel/nmi_watchdog"


def test_wakeup_disabled() -> None:
    text = "XHC1\t  S4\t*disabled  pci:0000:c1:00.4\nXHC10\t  S4\t*enabled  pci:0000:c1:00.5\n"
    assert wakeup_disabled(text, "XHC1")
    assert not wakeup_disabled(text, "XHC10")
    assert not wakeup_disabled(text, "XHC2")


def test_empty_journal_reports_nothing(tmp_path: Path) -> None:
    report = StatusChecker(FsRoot(tmp_path), systemctl=FakeSystemctl()).check(new_journal())
    assert report.total == 0
    assert report.drifted == 0


def test_drift_detection(tmp_path: Path, files) -> None:
    files(
        tmp_path,
        {
            EPP.lstrip("/"): "balance_power\n",
            NMI.lstrip("/"): "1\n",
            "proc/cmdline": "quiet acpi.ec_no_wakeup=1\n",
            "proc/acpi/wakeup": "XHC1\t  S4\t*disabled  pci:0000:c1:00.4\n",
            "etc/modprobe.d/bop-audio.conf": "options snd_hda_intel power_save=1\n",
        },
    )
    journal = new_journal()
    journal.sysfs_changes = [
        SysfsChange(path=EPP, original_value="balance_performance", new_value="balance_power"),
        SysfsChange(path=NMI, original_value="1", new_value="0"),
    ]
    journal.acpi_wakeup_toggled = ["XHC1"]
    journal.kernel_params_added = ["acpi.ec_no_wakeup=1", "amdgpu.abmlevel=3"]
    journal.services_disabled = ["tlp.service", "power-profiles-daemon.service"]
    journal.systemd_units_created = ["/etc/systemd/system/bop-powersave.service"]
    journal.modprobe_files_created = ["/etc/modprobe.d/bop-audio.conf"]

    systemctl = FakeSystemctl(enabled={"power-profiles-daemon.service"})
    report = StatusChecker(FsRoot(tmp_path), systemctl=systemctl).check(journal)

    assert [(s.path, s.active, s.actual) for s in report.sysfs] == [(EPP, True, "balance_power"), (NMI, False, "1")]
    assert [w.active for w in report.acpi_wakeup] == [True]
    assert [(k.param, k.in_cmdline) for k in report.kernel_params] == [
        ("acpi.ec_no_wakeup=1", True),
        ("amdgpu.abmlevel=3", False),
    ]
    assert [(s.name, s.still_stopped) for s in report.services] == [
        ("tlp.service", True),
        ("power-profiles-daemon.service", False),
    ]
    assert [u.exists for u in report.units] == [False]
    assert [m.exists for m in report.modprobe] == [True]

    assert report.total == 9
    assert report.active == 5
    assert report.drifted == 4
    data = report.to_dict()
    assert data["total"] == 9
    assert data["sysfs"][1]["actual"] == "1"
