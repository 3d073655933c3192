"""
Tests for role detection and the descriptor handoff.

Tests key features including:
- Role discrimination from the environment
- Listener count parsing and child environment construction
- Executable resolution
- Descriptor table slots, staging and spawn file actions
- Reopening inherited listeners
"""

import os
import socket
import stat

import pytest

from serverstarter.bootstrap import (
    Bootstrap,
    DescriptorTable,
    Role,
    build_child_env,
    determine_role,
    inherit_listeners,
    parse_listener_count,
    resolve_executable,
)
from serverstarter.exceptions import (
    ConfigurationError,
    DescriptorError,
    ProcessSpawnError,
)


@pytest.mark.unit
class TestDetermineRole:
    """Test role discrimination."""

    def test_absent_is_master(self):
        assert determine_role("LISTEN_FDS", {"PATH": "/bin"}) is Role.MASTER

    @pytest.mark.parametrize("value", ["2", "0", "", "garbage"])
    def test_present_is_worker(self, value):
        assert determine_role("LISTEN_FDS", {"LISTEN_FDS": value}) is Role.WORKER

    def test_uses_configured_name(self):
        environ = {"LISTEN_FDS": "1"}
        assert determine_role("MY_FDS", environ) is Role.MASTER
        assert determine_role("MY_FDS", {"MY_FDS": "1"}) is Role.WORKER

    def test_defaults_to_process_environment(self, monkeypatch):
        monkeypatch.setenv("STARTER_TEST_FDS", "1")
        assert determine_role("STARTER_TEST_FDS") is Role.WORKER
        monkeypatch.delenv("STARTER_TEST_FDS")
        assert determine_role("STARTER_TEST_FDS") is Role.MASTER


@pytest.mark.unit
class TestBootstrap:
    """Test the parsed environment value."""

    def test_master(self):
        bootstrap = Bootstrap.from_environ("LISTEN_FDS", {})
        assert bootstrap.is_master
        assert bootstrap.raw_count is None
        assert bootstrap.listener_count == 0

    def test_worker(self):
        bootstrap = Bootstrap.from_environ("LISTEN_FDS", {"LISTEN_FDS": "3"})
        assert bootstrap.role is Role.WORKER
        assert not bootstrap.is_master
        assert bootstrap.listener_count == 3

    def test_malformed_count(self):
        bootstrap = Bootstrap.from_environ("LISTEN_FDS", {"LISTEN_FDS": "x"})
        assert bootstrap.role is Role.WORKER
        with pytest.raises(ConfigurationError, match="invalid listener count"):
            bootstrap.listener_count

    def test_captures_once(self):
        environ = {"LISTEN_FDS": "1"}
        bootstrap = Bootstrap.from_environ("LISTEN_FDS", environ)
        environ["LISTEN_FDS"] = "5"
        assert bootstrap.listener_count == 1


@pytest.mark.unit
class TestParseListenerCount:
    """Test parse_listener_count()."""

    @pytest.mark.parametrize(
        "value,expected", [("0", 0), ("1", 1), ("64", 64), ("007", 7)]
    )
    def test_valid(self, value, expected):
        assert parse_listener_count(value) == expected

    @pytest.mark.parametrize("value", ["", "-1", "+1", " 1", "1.0", "one", "١"])
    def test_invalid(self, value):
        with pytest.raises(ConfigurationError):
            parse_listener_count(value, "LISTEN_FDS")


@pytest.mark.unit
class TestBuildChildEnv:
    """Test build_child_env()."""

    def test_sets_count(self):
        env = build_child_env({"PATH": "/bin"}, "LISTEN_FDS", 2)
        assert env == {"PATH": "/bin", "LISTEN_FDS": "2"}

    def test_replaces_stale_entry(self):
        env = build_child_env({"LISTEN_FDS": "9", "HOME": "/root"}, "LISTEN_FDS", 1)
        assert env["LISTEN_FDS"] == "1"
        assert list(env).count("LISTEN_FDS") == 1
        assert env["HOME"] == "/root"

    def test_does_not_modify_input(self):
        environ = {"LISTEN_FDS": "9"}
        build_child_env(environ, "LISTEN_FDS", 0)
        assert environ == {"LISTEN_FDS": "9"}

    def test_negative_count(self):
        with pytest.raises(ConfigurationError):
            build_child_env({}, "LISTEN_FDS", -1)


@pytest.mark.unit
class TestResolveExecutable:
    """Test resolve_executable()."""

    def _make_script(self, path):
        path.write_text("#!/bin/sh\nexit 0\n")
        path.chmod(path.stat().st_mode | stat.S_IXUSR)
        return path

    def test_relative_to_workdir(self, temp_dir):
        self._make_script(temp_dir / "app")
        assert resolve_executable("./app", str(temp_dir)) == str(temp_dir / "app")

    def test_absolute(self, temp_dir):
        script = self._make_script(temp_dir / "app")
        assert resolve_executable(str(script), "/") == str(script)

    def test_keeps_symlink(self, temp_dir):
        self._make_script(temp_dir / "app-v1")
        (temp_dir / "app").symlink_to(temp_dir / "app-v1")
        assert resolve_executable("./app", str(temp_dir)) == str(temp_dir / "app")

    def test_bare_name_searched_on_path(self, temp_dir, monkeypatch):
        self._make_script(temp_dir / "starter-test-app")
        monkeypatch.setenv("PATH", str(temp_dir))
        assert resolve_executable("starter-test-app", "/") == str(
            temp_dir / "starter-test-app"
        )

    def test_not_executable(self, temp_dir):
        (temp_dir / "data").write_text("")
        with pytest.raises(ProcessSpawnError):
            resolve_executable("./data", str(temp_dir))

    def test_missing(self, temp_dir, monkeypatch):
        monkeypatch.setenv("PATH", str(temp_dir))
        with pytest.raises(ProcessSpawnError):
            resolve_executable("no-such-program", str(temp_dir))
        with pytest.raises(ProcessSpawnError):
            resolve_executable("./no-such-program", str(temp_dir))

    def test_empty(self):
        with pytest.raises(ProcessSpawnError):
            resolve_executable("", "/")


@pytest.mark.unit
class TestDescriptorTable:
    """Test DescriptorTable slot mapping and staging."""

    def test_slots_start_after_standard_streams(self):
        table = DescriptorTable()
        assert table.add(10) == 3
        assert table.add(7) == 4
        table.extend([12, 11])
        assert table.fds == [10, 7, 12, 11]
        assert len(table) == 4
        assert table.top == 7

    def test_rejects_negative(self):
        with pytest.raises(DescriptorError):
            DescriptorTable().add(-1)

    def test_staged_copies_are_above_slots_and_closed(self, open_fds):
        r, w = os.pipe()
        open_fds.extend([r, w])
        table = DescriptorTable()
        table.extend([w, r])

        with table.staged() as staged:
            assert len(staged) == 2
            assert all(fd >= table.top for fd in staged)
            assert all(not os.get_inheritable(fd) for fd in staged)
            actions = table.file_actions(staged)
            assert actions == [
                (os.POSIX_SPAWN_DUP2, staged[0], 3),
                (os.POSIX_SPAWN_DUP2, staged[1], 4),
            ]
            # Copies refer to the same pipe
            os.write(staged[0], b"x")
            assert os.read(r, 1) == b"x"

        for fd in staged:
            with pytest.raises(OSError):
                os.fstat(fd)

    def test_staged_invalid_descriptor(self, open_fds):
        r, w = os.pipe()
        os.close(r)
        os.close(w)
        table = DescriptorTable()
        table.add(r)
        with pytest.raises(DescriptorError):
            with table.staged():
                pass

    def test_file_actions_rejects_overlap(self):
        table = DescriptorTable()
        table.extend([20, 21])
        with pytest.raises(DescriptorError, match="overlaps"):
            table.file_actions([4, 30])

    def test_file_actions_count_mismatch(self):
        table = DescriptorTable()
        table.add(20)
        with pytest.raises(DescriptorError, match="mismatch"):
            table.file_actions([])


@pytest.mark.integration
class TestInheritListeners:
    """Test inherit_listeners() on real descriptors."""

    def test_master_gets_nothing(self):
        assert inherit_listeners(Bootstrap("LISTEN_FDS", None), 4) == []

    def test_worker_without_listeners(self):
        assert inherit_listeners(Bootstrap("LISTEN_FDS", "0"), 4) == []

    def test_reopens_in_order(self):
        servers = [socket.create_server(("127.0.0.1", 0)) for _ in range(2)]
        ports = [s.getsockname()[1] for s in servers]
        base = 200
        for i, server in enumerate(servers):
            os.dup2(server.fileno(), base + i)

        try:
            listeners = inherit_listeners(Bootstrap("LISTEN_FDS", "2"), base)
            assert [sock.fileno() for sock in listeners] == [base, base + 1]
            assert [sock.getsockname()[1] for sock in listeners] == ports
            assert all(not sock.get_inheritable() for sock in listeners)
            for sock in listeners:
                sock.close()
        finally:
            for server in servers:
                server.close()

    def test_not_a_socket(self, open_fds):
        r, w = os.pipe()
        open_fds.extend([r, w])
        base = 210
        os.dup2(r, base)
        open_fds.append(base)
        with pytest.raises(DescriptorError, match="not a socket"):
            inherit_listeners(Bootstrap("LISTEN_FDS", "1"), base)

    def test_closes_opened_sockets_on_failure(self, open_fds):
        server = socket.create_server(("127.0.0.1", 0))
        base = 220
        os.dup2(server.fileno(), base)
        server.close()
        # base + 1 is not open
        try:
            os.close(base + 1)
        except OSError:
            pass

        with pytest.raises(DescriptorError):
            inherit_listeners(Bootstrap("LISTEN_FDS", "2"), base)
        with pytest.raises(OSError):
            os.fstat(base)

    def test_malformed_count(self):
        with pytest.raises(ConfigurationError):
            inherit_listeners(Bootstrap("LISTEN_FDS", "two"), 4)
