"""Tests for running commands inside a Ruby environment."""

import os
import signal
import threading
import time

import pytest

from railsup.core import exec_wrapper
from railsup.core.env_manager import EnvManager
from railsup.core.exec_wrapper import ExecError


@pytest.fixture
def env(paths, install):
    install("4.0.1")
    return EnvManager(paths).build_env("4.0.1")


class TestRun:
    """Test spawning the child process."""

    def test_exit_code_propagates(self, env, system_path):
        """Test the child's exit status is returned verbatim."""
        code = exec_wrapper.run(env, "sh", ["-c", "exit 3"], base_environ={"PATH": system_path})
        assert code == 3

    def test_success(self, env, system_path):
        """Test a succeeding child returns 0."""
        assert exec_wrapper.run(env, "true", base_environ={"PATH": system_path}) == 0

    def test_interpreter_found_first(self, env, system_path, capfd):
        """Test the resolved ruby shadows anything on the inherited PATH."""
        code = exec_wrapper.run(env, "ruby", base_environ={"PATH": system_path})
        assert code == 0
        assert capfd.readouterr().out.strip() == "ruby 4.0.1"

    def test_child_environment(self, env, paths, system_path):
        """Test the child sees the gem variables and no RUBYOPT."""
        script = (
            f'test "$GEM_HOME" = "{paths.gem_home("4.0.1")}" '
            f'&& test "$GEM_PATH" = "$GEM_HOME" '
            '&& test -z "$RUBYOPT" && test -z "$RUBYLIB" '
            f'&& case "$PATH" in "{paths.ruby_bin_dir("4.0.1")}:"*) exit 0;; *) exit 9;; esac'
        )
        base = {"PATH": system_path, "RUBYOPT": "-rfoo", "RUBYLIB": "/tmp/lib"}
        assert exec_wrapper.run(env, "sh", ["-c", script], base_environ=base) == 0

    def test_killed_by_signal(self, env, system_path):
        """Test a signal-terminated child maps to 128+N."""
        code = exec_wrapper.run(env, "sh", ["-c", "kill -TERM $$"], base_environ={"PATH": system_path})
        assert code == 128 + signal.SIGTERM

    def test_command_not_found(self, env, system_path):
        """Test a missing command raises ExecError."""
        with pytest.raises(ExecError):
            exec_wrapper.run(env, "railsup-no-such-command", base_environ={"PATH": system_path})

    def test_restores_signal_handlers(self, env, system_path):
        """Test forwarding handlers are removed once the child exits."""
        before = signal.getsignal(signal.SIGTERM)
        exec_wrapper.run(env, "true", base_environ={"PATH": system_path})
        assert signal.getsignal(signal.SIGTERM) == before


class TestBuildChildEnviron:
    """Test building the child environment."""

    def test_does_not_mutate_base(self, env):
        """Test the base environment is copied."""
        base = {"PATH": "/usr/bin", "RUBYOPT": "-w"}
        child = exec_wrapper.build_child_environ(env, base)
        assert base == {"PATH": "/usr/bin", "RUBYOPT": "-w"}
        assert child["PATH"].endswith(":/usr/bin")


def _signal_main_thread_when_ready(ready_file, signum, child_signum=None):
    """Wait for the child to write its pid, then signal the main thread."""
    main_ident = threading.main_thread().ident

    def _deliver():
        deadline = time.monotonic() + 10
        while time.monotonic() < deadline:
            content = ready_file.read_text().strip() if ready_file.exists() else ""
            if content:
                if child_signum is not None:
                    os.kill(int(content), child_signum)
                signal.pthread_kill(main_ident, signum)
                return
            time.sleep(0.02)

    thread = threading.Thread(target=_deliver, daemon=True)
    thread.start()
    return thread


class TestSignalForwarding:
    """Test signals received while the child is running."""

    def test_sigterm_reaches_child(self, env, system_path, tmp_path):
        """Test SIGTERM sent to railsup is forwarded and the child's exit code returned."""
        ready = tmp_path / "ready"
        script = (
            'trap "exit 42" TERM; '
            f'echo $$ > "{ready}"; '
            "i=0; while [ $i -lt 100 ]; do sleep 0.1; i=$((i+1)); done; exit 1"
        )
        thread = _signal_main_thread_when_ready(ready, signal.SIGTERM)

        code = exec_wrapper.run(env, "sh", ["-c", script], base_environ={"PATH": system_path})
        thread.join(timeout=5)

        assert code == 42

    def test_sigint_forwarded_outside_foreground_group(self, env, system_path, tmp_path, monkeypatch):
        """Test SIGINT is forwarded when the terminal did not deliver it to the child."""
        monkeypatch.setattr(exec_wrapper, "_in_foreground_group", lambda: False)
        ready = tmp_path / "ready"
        script = (
            'trap "exit 43" INT; '
            f'echo $$ > "{ready}"; '
            "i=0; while [ $i -lt 100 ]; do sleep 0.1; i=$((i+1)); done; exit 1"
        )
        thread = _signal_main_thread_when_ready(ready, signal.SIGINT)

        code = exec_wrapper.run(env, "sh", ["-c", script], base_environ={"PATH": system_path})
        thread.join(timeout=5)

        assert code == 43

    def test_terminal_sigint_delivered_once(self, env, system_path, tmp_path, monkeypatch):
        """Test a Ctrl-C sent to the whole foreground group reaches the child exactly once."""
        monkeypatch.setattr(exec_wrapper, "_in_foreground_group", lambda: True)
        ready = tmp_path / "ready"
        script = (
            "n=0; trap 'n=$((n+1))' INT; "
            f'echo $$ > "{ready}"; '
            "i=0; while [ $i -lt 20 ]; do sleep 0.1; i=$((i+1)); done; exit $n"
        )
        # Same delivery as the terminal driver: one SIGINT to the child, one to railsup.
        thread = _signal_main_thread_when_ready(ready, signal.SIGINT, child_signum=signal.SIGINT)

        code = exec_wrapper.run(env, "sh", ["-c", script], base_environ={"PATH": system_path})
        thread.join(timeout=5)

        assert code == 1

    def test_signal_before_spawn_is_delivered(self, env, system_path, monkeypatch):
        """Test a signal arriving before the child starts is sent once it exists."""
        real_popen = exec_wrapper.subprocess.Popen

        def popen_after_signal(*args, **kwargs):
            os.kill(os.getpid(), signal.SIGTERM)
            return real_popen(*args, **kwargs)

        monkeypatch.setattr(exec_wrapper.subprocess, "Popen", popen_after_signal)

        code = exec_wrapper.run(
            env, "sh", ["-c", "sleep 5; exit 1"], base_environ={"PATH": system_path}
        )

        assert code == 128 + signal.SIGTERM
