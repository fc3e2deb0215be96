"""Tests for storage/mount.py - single partition mount and unmount."""

from unittest.mock import Mock

import pytest

from usb_toolkit.storage import mount
from usb_toolkit.storage.exceptions import MountOperationError, ValidationError
from usb_toolkit.storage.mount import MountMode, UnmountMode
from usb_toolkit.storage.users import InvokingUser

from conftest import completed


ALICE = InvokingUser("alice", 1001, 1001, "/home/alice")


@pytest.fixture
def user(mocker):
    mocker.patch("usb_toolkit.storage.mount.invoking_user", return_value=ALICE)
    return ALICE


def blkid(fstype, label=""):
    def fake(command, **kwargs):
        if command[0] == "blkid":
            tag = command[command.index("-s") + 1]
            return completed(stdout=(fstype if tag == "TYPE" else label) + "\n")
        return completed()

    return fake


class TestBuildMountCommand:
    def test_vfat_gets_owner_options(self):
        command = mount.build_mount_command("sdb1", "/media/alice/DATA", "vfat", "ro", ALICE)
        assert command == [
            "mount", "-o", "ro,uid=1001,gid=1001", "-t", "vfat", "/dev/sdb1", "/media/alice/DATA",
        ]

    def test_ext4_plain(self):
        command = mount.build_mount_command("sdb1", "/mnt/x", "ext4", "", ALICE)
        assert command == ["mount", "-t", "ext4", "/dev/sdb1", "/mnt/x"]

    def test_unknown_fstype_omits_type(self):
        command = mount.build_mount_command("sdb1", "/mnt/x", "", "noexec,sync", ALICE)
        assert command == ["mount", "-o", "noexec,sync", "/dev/sdb1", "/mnt/x"]


class TestMountPoints:
    def test_default_uses_label(self):
        assert mount.default_mount_point("sdb1", "DATA", ALICE) == "/media/alice/DATA"

    def test_default_without_label(self):
        assert mount.default_mount_point("sdb1", "", ALICE) == "/media/alice/sdb1"

    @pytest.mark.parametrize(
        "label", ["..", ".", "../../../etc", "a/b", "evil\nname", "nul\x00"]
    )
    def test_unsafe_label_falls_back_to_partition(self, label):
        assert mount.default_mount_point("sdb1", label, ALICE) == "/media/alice/sdb1"

    def test_label_with_spaces_and_dots_kept(self):
        assert mount.default_mount_point("sdb1", "My .Stick", ALICE) == "/media/alice/My .Stick"

    def test_tilde_expanded(self):
        assert mount.resolve_mount_point("~/usb", ALICE) == "/home/alice/usb"

    def test_rejects_metacharacters(self):
        with pytest.raises(ValidationError):
            mount.resolve_mount_point("/mnt/usb;reboot", ALICE)


class TestMountPartition:
    def test_mounts_and_registers_cleanup(self, mocker, user, tmp_path):
        run = mocker.patch("usb_toolkit.storage.mount.run_command", side_effect=blkid("ext4", "DATA"))
        mocker.patch("os.chown")
        cleanup = Mock()
        target = tmp_path / "usb"

        result = mount.mount_partition(
            "sdb1", MountMode.READ_ONLY, mount_point=str(target), cleanup=cleanup
        )

        assert result == str(target)
        assert target.is_dir()
        mount_call = run.call_args_list[-1].args[0]
        assert mount_call == ["mount", "-o", "ro", "-t", "ext4", "/dev/sdb1", str(target)]
        cleanup.add_mount.assert_called_once_with(str(target))

    def test_traversal_label_never_leaves_media(self, mocker, user):
        run = mocker.patch(
            "usb_toolkit.storage.mount.run_command", side_effect=blkid("ext4", "../../../etc")
        )
        mkdir = mocker.patch("usb_toolkit.storage.mount.Path.mkdir")
        chown = mocker.patch("os.chown")

        result = mount.mount_partition("sdb1")

        assert result == "/media/alice/sdb1"
        mkdir.assert_called_once_with(parents=True, exist_ok=True)
        assert run.call_args_list[-1].args[0][-1] == "/media/alice/sdb1"
        chown.assert_called_once_with("/media/alice/sdb1", 1001, 1001)

    def test_failure_removes_created_directory(self, mocker, user, tmp_path):
        def fake(command, **kwargs):
            if command[0] == "mount":
                return completed(32, stderr="wrong fs type, bad superblock")
            return completed(stdout="\n")

        mocker.patch("usb_toolkit.storage.mount.run_command", side_effect=fake)
        target = tmp_path / "usb"

        with pytest.raises(MountOperationError, match="bad superblock"):
            mount.mount_partition("sdb1", mount_point=str(target))
        assert not target.exists()

    def test_failure_keeps_existing_directory(self, mocker, user, tmp_path):
        mocker.patch(
            "usb_toolkit.storage.mount.run_command",
            side_effect=lambda command, **kw: completed(32) if command[0] == "mount" else completed(stdout="\n"),
        )
        with pytest.raises(MountOperationError):
            mount.mount_partition("sdb1", mount_point=str(tmp_path))
        assert tmp_path.exists()

    def test_custom_options_validated_before_mount(self, mocker, user, tmp_path):
        run = mocker.patch("usb_toolkit.storage.mount.run_command", side_effect=blkid("vfat"))
        with pytest.raises(ValidationError):
            mount.mount_partition(
                "sdb1", MountMode.CUSTOM, custom_options="ro;reboot", mount_point=str(tmp_path / "x")
            )
        assert all(call.args[0][0] == "blkid" for call in run.call_args_list)


class TestUnmountPartition:
    def test_safe_falls_back_to_device_path(self, mocker, tmp_path):
        results = {"sync": completed(), "umount": [completed(32, stderr="not mounted"), completed()]}

        def fake(command, **kwargs):
            if command[0] == "umount":
                return results["umount"].pop(0)
            return results["sync"]

        run = mocker.patch("usb_toolkit.storage.mount.run_command", side_effect=fake)
        cleanup = Mock()
        mount_point = tmp_path / "usb"
        mount_point.mkdir()

        mount.unmount_partition("sdb1", str(mount_point), UnmountMode.SAFE, cleanup)

        commands = [call.args[0] for call in run.call_args_list]
        assert commands == [["sync"], ["umount", str(mount_point)], ["umount", "/dev/sdb1"]]
        assert not mount_point.exists()
        cleanup.discard_mount.assert_called_once_with(str(mount_point))

    @pytest.mark.parametrize("mode,flag", [(UnmountMode.FORCE, "-f"), (UnmountMode.LAZY, "-l")])
    def test_force_and_lazy(self, mocker, mode, flag):
        run = mocker.patch("usb_toolkit.storage.mount.run_command", return_value=completed())
        mount.unmount_partition("sdb1", "/media/alice/DATA", mode)
        run.assert_called_once_with(["umount", flag, "/media/alice/DATA"], check=False)

    def test_failure_raises(self, mocker):
        mocker.patch(
            "usb_toolkit.storage.mount.run_command",
            return_value=completed(32, stderr="target is busy"),
        )
        with pytest.raises(MountOperationError, match="target is busy"):
            mount.unmount_partition("sdb1", "/media/alice/DATA", UnmountMode.FORCE)


class TestProcessesUsing:
    def test_lsof_skips_header(self, mocker):
        mocker.patch("usb_toolkit.storage.mount.tool_available", return_value=True)
        mocker.patch(
            "usb_toolkit.storage.mount.run_command",
            return_value=completed(stdout="COMMAND PID USER\nbash 4242 alice\n"),
        )
        assert mount.processes_using("/media/alice/DATA") == ["bash 4242 alice"]

    def test_fuser_fallback_reads_stderr(self, mocker):
        mocker.patch("usb_toolkit.storage.mount.tool_available", side_effect=lambda name: name == "fuser")
        run = mocker.patch(
            "usb_toolkit.storage.mount.run_command",
            return_value=completed(stderr="USER PID ACCESS COMMAND\nalice 4242 ..c.. bash\n"),
        )
        lines = mount.processes_using("/media/alice/DATA")
        assert run.call_args.args[0] == ["fuser", "-v", "/media/alice/DATA"]
        assert lines[-1] == "alice 4242 ..c.. bash"

    def test_no_tool(self, mocker):
        mocker.patch("usb_toolkit.storage.mount.tool_available", return_value=False)
        with pytest.raises(MountOperationError):
            mount.processes_using("/media/alice/DATA")
