"""Tests for rsync mirroring over ssh."""

import shlex

import pytest

from panel_migrate.core.transfer import RemoteHost, RsyncError, RsyncTransfer

RSYNC_OUTPUT = """\
sending incremental file list
index.html
assets/app.css

sent 1,500 bytes  received 120 bytes  3,240.00 bytes/sec
total size is 5,678  speedup is 3.50
"""


@pytest.fixture
def target() -> RemoteHost:
    return RemoteHost(hostname="203.0.113.5", identity_file="/tmp/ace_migration_key")


@pytest.fixture
def rsync(runner) -> RsyncTransfer:
    return RsyncTransfer(runner, timeout=60)


class TestRemoteHost:
    def test_address(self, target):
        assert target.address == "root@203.0.113.5"

    def test_ipv6_address_is_bracketed(self):
        assert RemoteHost(hostname="2001:db8::1").address == "root@[2001:db8::1]"


class TestCommandBuilding:
    def test_ssh_command(self, rsync, target):
        assert rsync.build_ssh_cmd(target) == [
            "ssh",
            "-o", "StrictHostKeyChecking=no",
            "-i", "/tmp/ace_migration_key",
            "root@203.0.113.5",
        ]

    def test_ssh_command_custom_port_without_key(self, rsync):
        host = RemoteHost(hostname="panel.example.com", user="deploy", port=2222)
        assert rsync.build_ssh_cmd(host) == [
            "ssh", "-o", "StrictHostKeyChecking=no", "-p", "2222", "deploy@panel.example.com",
        ]

    def test_rsync_command(self, rsync, target):
        cmd = rsync.build_rsync_cmd("/opt/ace/sites/blog/", target, "/opt/ace/sites/blog/")

        assert cmd[:5] == ["rsync", "-av", "-s", "-z"]
        remote_shell = cmd[cmd.index("-e") + 1]
        assert shlex.split(remote_shell) == [
            "ssh", "-o", "StrictHostKeyChecking=no", "-i", "/tmp/ace_migration_key",
        ]
        assert cmd[-2:] == ["/opt/ace/sites/blog/", "root@203.0.113.5:/opt/ace/sites/blog/"]

    def test_key_path_with_spaces_stays_one_argument(self, rsync):
        host = RemoteHost(hostname="203.0.113.5", identity_file="/tmp/my keys/id")
        remote_shell = rsync.build_rsync_cmd("/a", host, "/a")[-3]
        assert shlex.split(remote_shell)[-1] == "/tmp/my keys/id"

    def test_compression_can_be_disabled(self, rsync, target):
        assert "-z" not in rsync.build_rsync_cmd("/a/", target, "/a/", compress=False)


class TestTransfer:
    async def test_mirror_directory_adds_trailing_slashes(self, rsync, runner, target):
        runner.outputs["rsync"] = RSYNC_OUTPUT

        result = await rsync.mirror_directory("/opt/ace/sites/blog", target)

        cmd = runner.commands_for("rsync")[0]
        assert cmd[-2:] == ["/opt/ace/sites/blog/", "root@203.0.113.5:/opt/ace/sites/blog/"]
        assert result == {"command": cmd, "output": RSYNC_OUTPUT}

    async def test_mirror_file_keeps_path(self, rsync, runner, target):
        await rsync.mirror_file("/tmp/ace_migration_mysql_shop.sql", target)

        cmd = runner.commands_for("rsync")[0]
        assert cmd[-2:] == [
            "/tmp/ace_migration_mysql_shop.sql",
            "root@203.0.113.5:/tmp/ace_migration_mysql_shop.sql",
        ]

    async def test_failure_raises_rsync_error(self, rsync, runner, target):
        runner.fail_on("rsync", "rsync: change_dir \"/missing\" failed: No such file or directory")

        with pytest.raises(RsyncError, match="exit 1.*No such file"):
            await rsync.mirror_directory("/missing", target)
