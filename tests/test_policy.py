"""Tests for policy.py - modprobe blacklists, authorization, automount and audit."""

import pytest

from usb_toolkit import policy
from usb_toolkit.policy import PolicyChange, UsbPolicy
from usb_toolkit.storage.exceptions import DeviceNotFoundError, ValidationError
from usb_toolkit.storage.users import InvokingUser

from conftest import completed


LOADED = "usb_storage 77824 1 uas, Live 0x0000000000000000\nuas 28672 0 - Live 0x0\n"
NOT_LOADED = "ext4 864256 2 - Live 0x0\n"


@pytest.fixture
def modules(tmp_path):
    path = tmp_path / "modules"
    path.write_text(LOADED)
    return path


@pytest.fixture
def usb_policy(tmp_path, fake_sysfs, modules, mountinfo):
    fake_sysfs.add_usb_bus("usb1", "1")
    fake_sysfs.add_usb_bus("usb2", "1")
    return UsbPolicy(
        tmp_path / "modprobe.d",
        fake_sysfs.reader,
        modules,
        udisks2_override_dir=tmp_path / "udisks2.service.d",
        media_root=tmp_path / "media",
        mountinfo_path=str(mountinfo.path),
    )


@pytest.fixture(autouse=True)
def systemctl(mocker):
    return mocker.patch("usb_toolkit.policy.tool_available", return_value=True)


@pytest.fixture(autouse=True)
def run(mocker):
    return mocker.patch("usb_toolkit.policy.run_command", return_value=completed())


class TestStatus:
    def test_initial(self, usb_policy):
        status = usb_policy.status()
        assert not status.storage_blacklisted
        assert not status.uas_blacklisted
        assert status.storage_module_loaded
        assert [b.bus for b in status.buses] == ["usb1", "usb2"]
        assert not any(b.blocked for b in status.buses)

    def test_module_not_loaded(self, usb_policy, modules):
        modules.write_text(NOT_LOADED)
        assert not usb_policy.module_loaded()

    def test_missing_proc_modules(self, tmp_path, fake_sysfs):
        assert not UsbPolicy(tmp_path, fake_sysfs.reader, tmp_path / "nope").module_loaded()


class TestStorageModules:
    def test_block_writes_blacklists_and_unloads(self, usb_policy, run):
        change = usb_policy.block_storage()

        directory = usb_policy.modprobe_dir
        assert (directory / policy.STORAGE_BLACKLIST).read_text() == "blacklist usb-storage\n"
        assert (directory / policy.UAS_BLACKLIST).read_text() == "blacklist uas\n"
        run.assert_called_once_with(["modprobe", "-r", "usb_storage"], check=False)
        assert "usb_storage unloaded" in change.changed
        assert not change.pending_reboot
        assert usb_policy.status().storage_blocked

    def test_block_is_idempotent(self, usb_policy, run):
        usb_policy.block_storage()
        change = usb_policy.block_storage()
        assert len(change.unchanged) == 2

    def test_module_in_use_pending_reboot(self, usb_policy, mocker):
        mocker.patch(
            "usb_toolkit.policy.run_command",
            return_value=completed(1, stderr="modprobe: FATAL: Module usb_storage is in use."),
        )
        change = usb_policy.block_storage()
        assert change.pending_reboot

    def test_allow_removes_blacklists_and_loads(self, usb_policy, modules, run):
        usb_policy.block_storage()
        modules.write_text(NOT_LOADED)
        run.reset_mock()

        change = usb_policy.allow_storage()

        assert not (usb_policy.modprobe_dir / policy.STORAGE_BLACKLIST).exists()
        assert not (usb_policy.modprobe_dir / policy.UAS_BLACKLIST).exists()
        run.assert_called_once_with(["modprobe", "usb_storage"], check=False)
        assert "usb_storage loaded" in change.changed

    def test_allow_when_already_allowed(self, usb_policy, run):
        change = usb_policy.allow_storage()
        assert change.changed == []
        run.assert_not_called()


class TestAuthorizedDefault:
    def test_block_new_devices(self, usb_policy, fake_sysfs):
        change = usb_policy.set_authorized_default(False)
        assert change.changed == ["usb1", "usb2"]
        assert all(b.blocked for b in usb_policy.bus_policies())

    def test_allow_new_devices(self, usb_policy):
        usb_policy.set_authorized_default(False)
        usb_policy.set_authorized_default(True)
        assert [b.authorized_default for b in usb_policy.bus_policies()] == ["1", "1"]

    def test_no_buses(self, tmp_path, fake_sysfs, modules):
        empty = UsbPolicy(tmp_path / "modprobe.d", fake_sysfs.reader, modules)
        assert empty.set_authorized_default(False).changed == []


class TestAuthorizeDevice:
    def test_lists_only_blocked(self, usb_policy, fake_sysfs):
        fake_sysfs.add_usb_device("1-7", authorized="1")
        fake_sysfs.add_usb_device("1-7.3", authorized="0", product="Flash Drive")
        blocked = [d.name for d in usb_policy.usb_devices() if d.blocked]
        assert blocked == ["1-7.3"]

    def test_authorize_writes_one(self, usb_policy, fake_sysfs):
        device_dir = fake_sysfs.add_usb_device("1-7.3", authorized="0")

        change = usb_policy.authorize_device("1-7.3")

        assert (device_dir / "authorized").read_text().strip() == "1"
        assert change.changed == ["1-7.3 authorized"]

    def test_already_authorized(self, usb_policy, fake_sysfs):
        fake_sysfs.add_usb_device("1-7", authorized="1")
        assert usb_policy.authorize_device("1-7").unchanged == ["1-7"]

    def test_unknown_device(self, usb_policy):
        with pytest.raises(DeviceNotFoundError):
            usb_policy.authorize_device("3-1")

    @pytest.mark.parametrize("name", ["../../../etc", "1-7/authorized", "", "sdb"])
    def test_rejects_non_usb_names(self, usb_policy, name):
        with pytest.raises(ValidationError):
            usb_policy.authorize_device(name)


class TestAudit:
    def test_devices_buses_and_modules(self, usb_policy, fake_sysfs):
        fake_sysfs.add_usb_device("1-7.3", authorized="0", serial="AA01")
        (fake_sysfs.root / "devices/pci0000:00/0000:00:14.0/usb1/speed").write_text("480\n")

        audit = usb_policy.audit()

        device = audit.devices[0]
        assert device.vid_pid == "046d:c52b"
        assert device.serial == "AA01"
        assert device.blocked
        assert audit.buses[0].speed == "480"
        assert audit.buses[1].speed == "?"
        assert audit.modules["usb_storage"] and audit.modules["uas"]
        assert not audit.modules["usbhid"]
        assert set(audit.modules) == set(policy.AUDIT_MODULES)

    def test_blacklist_and_other_files(self, usb_policy, run):
        usb_policy.block_storage()
        (usb_policy.modprobe_dir / "local.conf").write_text("options usbcore autosuspend=-1\n")
        (usb_policy.modprobe_dir / "sound.conf").write_text("options snd_hda_intel power_save=1\n")

        audit = usb_policy.audit()

        storage = str(usb_policy.modprobe_dir / policy.STORAGE_BLACKLIST)
        assert audit.blacklist_files[storage] == "blacklist usb-storage"
        assert audit.other_files == [str(usb_policy.modprobe_dir / "local.conf")]


class TestAutomount:
    def test_harden_writes_drop_in_and_restarts(self, usb_policy, run):
        change = usb_policy.harden_automount()

        assert usb_policy.udisks2_override.read_text() == policy.UDISKS2_OVERRIDE_CONTENT
        commands = [call.args[0] for call in run.call_args_list]
        assert ["systemctl", "daemon-reload"] in commands
        assert ["systemctl", "restart", "udisks2"] in commands
        assert "udisks2 restarted" in change.changed
        assert usb_policy.status().automount_hardened

    def test_harden_without_running_service(self, usb_policy, mocker):
        def fake(command, **kwargs):
            return completed(3) if "is-active" in command else completed()

        run = mocker.patch("usb_toolkit.policy.run_command", side_effect=fake)

        usb_policy.harden_automount()

        assert ["systemctl", "restart", "udisks2"] not in [c.args[0] for c in run.call_args_list]

    def test_without_systemctl_pending(self, usb_policy, systemctl, run):
        systemctl.return_value = False
        change = usb_policy.harden_automount()
        assert change.pending_reboot
        run.assert_not_called()
        assert not usb_policy.status().udisks2_active

    def test_restore_removes_drop_in_and_stale_dirs(self, usb_policy, mountinfo, mocker, tmp_path):
        mocker.patch(
            "usb_toolkit.policy.invoking_user",
            return_value=InvokingUser("alice", 1001, 1001, "/home/alice"),
        )
        usb_policy.harden_automount()
        user_dir = tmp_path / "media" / "alice"
        (user_dir / "OLD").mkdir(parents=True)
        (user_dir / "DATA").mkdir()
        (user_dir / "FULL").mkdir()
        (user_dir / "FULL" / "file.txt").write_text("keep")
        mountinfo.mount("8:17", str(user_dir / "DATA"), "/dev/sdb1")

        change = usb_policy.restore_automount()

        assert not usb_policy.udisks2_override.exists()
        assert not usb_policy.udisks2_override_dir.exists()
        assert not (user_dir / "OLD").exists()
        assert (user_dir / "DATA").exists()
        assert (user_dir / "FULL").exists()
        assert f"removed stale mount point {user_dir / 'OLD'}" in change.changed


class TestQuickActions:
    def test_lockdown(self, usb_policy, run):
        change = usb_policy.lockdown()

        assert usb_policy.status().storage_blocked
        assert usb_policy.udisks2_override.is_file()
        assert "usb_storage unloaded" in change.changed
        # lockdown leaves bus authorization alone
        assert not any(b.blocked for b in usb_policy.bus_policies())

    def test_unlock_restores_everything(self, usb_policy, modules, mocker, run):
        mocker.patch(
            "usb_toolkit.policy.invoking_user",
            return_value=InvokingUser("alice", 1001, 1001, "/home/alice"),
        )
        usb_policy.lockdown()
        usb_policy.set_authorized_default(False)
        modules.write_text(NOT_LOADED)

        change = usb_policy.unlock()

        status = usb_policy.status()
        assert not status.storage_blocked
        assert not status.automount_hardened
        assert not any(b.blocked for b in status.buses)
        assert "usb_storage loaded" in change.changed
        assert "usb1" in change.changed

    def test_merge(self):
        first = PolicyChange(changed=["a"])
        merged = first.merge(PolicyChange(unchanged=["b"], pending_reboot=True))
        assert merged is first
        assert merged.changed == ["a"]
        assert merged.unchanged == ["b"]
        assert merged.pending_reboot
