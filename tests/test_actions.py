"""Tests for menu actions, driven through patched prompts."""

from unittest.mock import Mock

import pytest

from usb_toolkit.actions import (
    common,
    detect_actions,
    erase_actions,
    format_actions,
    health_actions,
    image_actions,
    iso_actions,
    mount_actions,
    policy_actions,
    quick_actions,
)
from usb_toolkit.app.context import AppContext
from usb_toolkit.domain.models import ConfirmationToken, UnmountResult
from usb_toolkit.policy import PolicyChange
from usb_toolkit.storage.eject import EjectResult
from usb_toolkit.storage.erase import WipeMode, WipeResult
from usb_toolkit.storage.exceptions import (
    ConfirmationMismatchError,
    SystemDiskError,
    ToolInvocationError,
)
from usb_toolkit.storage.health import FsckReport, SpeedResult
from usb_toolkit.storage.image import Compression
from usb_toolkit.storage.iso import VerifyResult
from usb_toolkit.storage.mount import MountMode, UnmountMode
from usb_toolkit.storage.users import InvokingUser

from conftest import completed


@pytest.fixture
def context(plain_ui, usb_stick):
    gate = Mock()
    gate.authorize.side_effect = lambda name, operation, **kw: ConfirmationToken(name, operation)
    return AppContext(ui=plain_ui, sysfs=usb_stick.reader, gate=gate)


@pytest.fixture
def choices(mocker):
    """Feed numbered-menu answers in order."""

    def feed(*answers):
        return mocker.patch("usb_toolkit.ui.prompts.IntPrompt.ask", side_effect=list(answers))

    return feed


def output(context):
    return context.ui.console.export_text(clear=False)


class TestMenuAction:
    def test_storage_error_reported(self, context):
        @common.menu_action
        def broken(ctx):
            raise SystemDiskError("sda", "backs /")

        broken(context)
        assert "[ERROR] /dev/sda is a system disk (backs /)" in output(context)

    def test_confirmation_mismatch_is_cancel(self, context):
        @common.menu_action
        def cancelled(ctx):
            raise ConfirmationMismatchError("sdb", "sdc")

        cancelled(context)
        assert "[WARN] Cancelled." in output(context)

    def test_other_errors_propagate(self, context):
        @common.menu_action
        def crashing(ctx):
            raise KeyError("bug")

        with pytest.raises(KeyError):
            crashing(context)


class TestChooseDevice:
    def test_no_devices(self, plain_ui, fake_sysfs):
        context = AppContext(ui=plain_ui, sysfs=fake_sysfs.reader, gate=Mock())
        assert common.choose_device(context, "Pick") is None
        assert "No USB storage devices found." in output(context)

    def test_excluded(self, context):
        assert common.choose_device(context, "Pick", exclude=("sdb",)) is None

    def test_selects(self, context, choices):
        choices(1)
        assert common.choose_device(context, "Pick").name == "sdb"


class TestDetect:
    def test_lists_devices_and_partitions(self, context, mountinfo, mocker):
        mountinfo.mount("8:17", "/media/alice/DATA", "/dev/sdb1")
        mocker.patch(
            "usb_toolkit.actions.detect_actions.probe_filesystem", return_value=("vfat", "DATA")
        )

        detect_actions.detect_devices(context)

        text = output(context)
        assert "Generic Flash Disk 32GB" in text
        assert "/dev/sdb1" in text
        assert "/media/alice/DATA" in text
        assert "1 USB storage device(s) found." in text


class TestFormat:
    def test_quick_format(self, context, choices, mocker):
        choices(1, 2, 4)  # sdb, gpt, ext4
        mocker.patch("usb_toolkit.actions.format_actions.tool_available", return_value=True)
        mocker.patch("usb_toolkit.ui.prompts.Prompt.ask", return_value="DATA")
        mocker.patch("usb_toolkit.ui.prompts.Confirm.ask", return_value=False)
        fmt = mocker.patch(
            "usb_toolkit.actions.format_actions.format_device", return_value="/dev/sdb1"
        )

        format_actions.format_usb(context)

        context.gate.check_not_system_disk.assert_called_once_with("sdb")
        context.gate.authorize.assert_called_once_with("sdb", "format as ext4")
        args, kwargs = fmt.call_args
        assert args[0] == "sdb"
        assert args[2] == "ext4"
        assert kwargs == {"partition_table": "gpt", "label": "DATA"}
        assert "[OK] Formatted /dev/sdb1 as ext4" in output(context)

    def test_cancelled_at_confirmation(self, context, choices, mocker):
        choices(1, 1, 1)
        mocker.patch("usb_toolkit.actions.format_actions.tool_available", return_value=True)
        mocker.patch("usb_toolkit.ui.prompts.Prompt.ask", return_value="")
        mocker.patch("usb_toolkit.ui.prompts.Confirm.ask", return_value=False)
        context.gate.authorize.side_effect = ConfirmationMismatchError("sdb", "sdc")
        fmt = mocker.patch("usb_toolkit.actions.format_actions.format_device")

        format_actions.format_usb(context)

        fmt.assert_not_called()
        assert "Cancelled." in output(context)

    def test_system_disk_refused_before_questions(self, context, choices, mocker):
        choices(1)
        context.gate.check_not_system_disk.side_effect = SystemDiskError("sdb", "backs /")
        fmt = mocker.patch("usb_toolkit.actions.format_actions.format_device")

        format_actions.format_usb(context)

        fmt.assert_not_called()
        assert "system disk" in output(context)

    def test_tool_failure_reported(self, context, choices, mocker):
        choices(1, 1, 1)
        mocker.patch("usb_toolkit.actions.format_actions.tool_available", return_value=True)
        mocker.patch("usb_toolkit.ui.prompts.Prompt.ask", return_value="")
        mocker.patch("usb_toolkit.ui.prompts.Confirm.ask", return_value=False)
        mocker.patch(
            "usb_toolkit.actions.format_actions.format_device",
            side_effect=ToolInvocationError(["parted"], 1, "Error: Partition(s) on /dev/sdb are being used."),
        )

        format_actions.format_usb(context)

        assert "parted failed with exit code 1" in output(context)


class TestWipe:
    def test_multipass_with_warnings(self, context, choices, mocker):
        choices(1, 4)
        result = WipeResult("sdb", WipeMode.MULTIPASS, ["dd from /dev/zero exited with 1"])
        wipe = mocker.patch("usb_toolkit.actions.erase_actions.wipe_device", return_value=result)

        erase_actions.secure_wipe(context)

        assert wipe.call_args.args[2] is WipeMode.MULTIPASS
        context.gate.authorize.assert_called_once_with("sdb", "multipass wipe")
        assert "Wipe finished with warnings" in output(context)

    def test_back_from_mode_selection(self, context, choices, mocker):
        choices(1, 0)
        wipe = mocker.patch("usb_toolkit.actions.erase_actions.wipe_device")
        erase_actions.secure_wipe(context)
        wipe.assert_not_called()
        context.gate.authorize.assert_not_called()


class TestQuickActions:
    def test_eject_still_mounted(self, context, choices, mocker):
        choices(1)
        mocker.patch(
            "usb_toolkit.actions.quick_actions.safe_eject",
            return_value=EjectResult(
                "sdb",
                UnmountResult("sdb", failed=["/media/alice/DATA"]),
                notes=["partitions still mounted; not powering off"],
            ),
        )
        quick_actions.eject_usb(context)
        assert "do NOT remove /dev/sdb" in output(context)

    def test_eject_powered_off(self, context, choices, mocker):
        choices(1)
        mocker.patch(
            "usb_toolkit.actions.quick_actions.safe_eject",
            return_value=EjectResult("sdb", UnmountResult("sdb"), "udisksctl"),
        )
        quick_actions.eject_usb(context)
        assert "safe to remove /dev/sdb" in output(context)

    def test_block_attributes(self, context, usb_stick):
        queue = usb_stick.disk_dirs["sdb"] / "queue"
        queue.mkdir()
        (queue / "scheduler").write_text("[mq-deadline] none\n")
        attributes = dict(quick_actions.block_attributes(context, "sdb"))
        assert attributes["Read-only"] == "0"
        assert attributes["Scheduler"] == "[mq-deadline] none"
        assert attributes["Logical BS"] == "?"

    def test_device_info(self, context, choices, mocker):
        choices(1)
        run = mocker.patch(
            "usb_toolkit.actions.quick_actions.run_command",
            return_value=completed(stdout="NAME SIZE FSTYPE\nsdb1 29.8G vfat\n"),
        )
        quick_actions.device_info(context)
        assert run.call_args.args[0][-1] == "/dev/sdb"
        text = output(context)
        assert "sdb1 29.8G vfat" in text
        assert "Scheduler:" in text


class TestMountActions:
    def test_mount_persists_after_session(self, context, choices, mocker):
        choices(1, 2)  # sdb1, read-only
        mocker.patch(
            "usb_toolkit.actions.mount_actions.probe_filesystem", return_value=("vfat", "DATA")
        )
        mocker.patch(
            "usb_toolkit.actions.mount_actions.invoking_user",
            return_value=InvokingUser("alice", 1001, 1001, "/home/alice"),
        )
        mocker.patch("usb_toolkit.ui.prompts.Prompt.ask", return_value="/media/alice/DATA")

        def fake_mount(partition, mode, *, custom_options, mount_point, cleanup):
            cleanup.add_mount("/media/alice/DATA")
            return "/media/alice/DATA"

        mount = mocker.patch(
            "usb_toolkit.actions.mount_actions.mount_partition", side_effect=fake_mount
        )

        mount_actions.mount_usb(context)

        assert mount.call_args.args == ("sdb1", MountMode.READ_ONLY)
        assert mount.call_args.kwargs["mount_point"] is None
        assert context.cleanup.temp_mounts == []
        assert "Mounted /dev/sdb1 at /media/alice/DATA" in output(context)

    def test_unmount_shows_processes_first(self, context, choices, mountinfo, mocker):
        mountinfo.mount("8:17", "/media/alice/DATA", "/dev/sdb1")
        choices(1, 4, 1)  # sdb1, show processes, safe
        mocker.patch(
            "usb_toolkit.actions.mount_actions.processes_using",
            return_value=["bash 4242 alice"],
        )
        unmount = mocker.patch("usb_toolkit.actions.mount_actions.unmount_partition")

        mount_actions.unmount_usb(context)

        assert "bash 4242 alice" in output(context)
        unmount.assert_called_once_with(
            "sdb1", "/media/alice/DATA", UnmountMode.SAFE, cleanup=context.cleanup
        )


class TestPolicyActions:
    def test_status(self, context, fake_sysfs, mocker):
        fake_sysfs.add_usb_bus("usb1", "0")
        mocker.patch("usb_toolkit.policy.tool_available", return_value=False)

        policy_actions.policy_status(context)

        text = output(context)
        assert "USB storage: allowed" in text
        assert "usb1: authorized_default=0 BLOCKED (new devices)" in text
        assert "sandbox override:      normal" in text
        assert "udisks2 service:       inactive" in text

    def test_authorize_blocked_device(self, context, fake_sysfs, choices):
        fake_sysfs.add_usb_device("1-7", authorized="1")
        device_dir = fake_sysfs.add_usb_device("1-7.3", authorized="0", product="Flash Drive")
        choices(1)

        policy_actions.authorize_device(context)

        assert (device_dir / "authorized").read_text().strip() == "1"
        assert "[OK] 1-7.3 authorized" in output(context)

    def test_authorize_nothing_blocked(self, context, choices):
        ask = choices()
        policy_actions.authorize_device(context)
        ask.assert_not_called()
        assert "No blocked USB devices found." in output(context)

    def test_audit(self, context, fake_sysfs):
        fake_sysfs.add_usb_bus("usb1", "1")
        fake_sysfs.add_usb_device("1-7.3", authorized="0", serial="AA01")

        policy_actions.policy_audit(context)

        text = output(context)
        assert "046d:c52b  Logitech - USB Receiver" in text
        assert "Device: 1-7.3 | Bus: 1 | Dev: 4 | Class: 00" in text
        assert "Status: BLOCKED" in text
        assert "usb1: authorized_default=1 (OPEN)" in text
        assert "usb_storage" in text
        assert "No USB blacklist files found." in text

    def test_lockdown_cancelled(self, context, mocker):
        mocker.patch("usb_toolkit.ui.prompts.Confirm.ask", return_value=False)
        policy = mocker.patch("usb_toolkit.actions.policy_actions.UsbPolicy")

        policy_actions.lockdown(context)

        policy.return_value.lockdown.assert_not_called()

    def test_unlock(self, context, mocker):
        mocker.patch("usb_toolkit.ui.prompts.Confirm.ask", return_value=True)
        policy = mocker.patch("usb_toolkit.actions.policy_actions.UsbPolicy")
        policy.return_value.unlock.return_value = PolicyChange(changed=["usb1"])

        policy_actions.unlock(context)

        assert "[OK] usb1" in output(context)
        assert "reinsert" in output(context)

    def test_block_requires_confirmation(self, context, mocker):
        mocker.patch("usb_toolkit.ui.prompts.Confirm.ask", return_value=False)
        policy = mocker.patch("usb_toolkit.actions.policy_actions.UsbPolicy")

        policy_actions.block_storage(context)

        policy.return_value.block_storage.assert_not_called()

    def test_pending_reboot_reported(self, context, mocker):
        mocker.patch("usb_toolkit.ui.prompts.Confirm.ask", return_value=True)
        policy = mocker.patch("usb_toolkit.actions.policy_actions.UsbPolicy")
        policy.return_value.block_storage.return_value = PolicyChange(
            changed=["/etc/modprobe.d/usb-storage-blacklist.conf"], pending_reboot=True
        )

        policy_actions.block_storage(context)

        assert "after reboot" in output(context)


class TestImageActions:
    def test_default_image_path(self, mocker):
        mocker.patch(
            "usb_toolkit.actions.image_actions.invoking_user",
            return_value=Mock(home="/home/alice"),
        )
        path = image_actions.default_image_path("sdb", Compression.ZSTD)
        assert path.startswith("/home/alice/usb-backup-sdb-")
        assert path.endswith(".img.zst")

    def test_clone_needs_two_devices(self, context):
        image_actions.clone_usb(context)
        assert "Cloning needs two USB devices." in output(context)


class TestHealthActions:
    def test_fsck_only_offers_unmounted(self, context, mountinfo, mocker):
        mountinfo.mount("8:17", "/media/alice/DATA", "/dev/sdb1")
        fsck = mocker.patch("usb_toolkit.actions.health_actions.health.run_fsck")

        health_actions.check_filesystem(context)

        fsck.assert_not_called()
        assert "No unmounted USB partitions found." in output(context)

    def test_fsck_corrected(self, context, choices, mocker):
        choices(1)
        mocker.patch(
            "usb_toolkit.actions.health_actions.probe_filesystem", return_value=("vfat", "")
        )
        mocker.patch(
            "usb_toolkit.actions.health_actions.health.run_fsck",
            return_value=FsckReport("sdb1", "vfat", 1, "Fixed FAT\n"),
        )

        health_actions.check_filesystem(context)

        text = output(context)
        assert "Fixed FAT" in text
        assert "Filesystem errors were corrected." in text

    def test_write_speed_is_gated(self, context, choices, mocker):
        choices(1)
        write = mocker.patch(
            "usb_toolkit.actions.health_actions.health.write_speed_test",
            return_value=SpeedResult("sdb", "write", 100, 1024**2, "21.4 MB/s", ""),
        )

        health_actions.write_speed(context)

        context.gate.authorize.assert_called_once_with("sdb", "write speed test")
        assert write.call_args.args[1].device_name == "sdb"
        assert "Write speed: 21.4 MB/s" in output(context)


class TestIsoActions:
    def test_write_and_verify_mismatch(self, context, choices, mocker):
        choices(1)
        mocker.patch("usb_toolkit.ui.prompts.Prompt.ask", return_value="/tmp/debian.iso")
        mocker.patch("usb_toolkit.ui.prompts.Confirm.ask", return_value=True)
        mocker.patch("usb_toolkit.actions.iso_actions.check_iso", return_value=4 * 1024**2)
        write = mocker.patch("usb_toolkit.actions.iso_actions.write_iso")
        mocker.patch(
            "usb_toolkit.actions.iso_actions.verify_iso",
            return_value=VerifyResult("aa" * 32, "bb" * 32),
        )

        iso_actions.write_iso_usb(context)

        context.gate.authorize.assert_called_once_with("sdb", "write debian.iso")
        assert write.call_args.args[:2] == ("/tmp/debian.iso", "sdb")
        assert "DO NOT match" in output(context)
