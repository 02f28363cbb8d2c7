import subprocess
from pathlib import Path

from studiokit.engines import DockerEngine, ExitStatus, LocalEngine
from studiokit.engines.base import ExecutionEngine
from studiokit.studio import BASE_PATH

ENV = {"PATH": BASE_PATH}


def test_exit_status_describe():
    """Verify exit codes and signals are described."""
    assert ExitStatus(args=("true",), returncode=0).ok
    assert ExitStatus(args=("x",), returncode=2).describe() == "exit 2"
    killed = ExitStatus(args=("x",), returncode=-15)
    assert killed.signal == 15
    assert killed.describe() == "killed by SIGTERM"


def test_local_engine_exit_codes(tmp_path):
    """Verify the local engine reports the process exit code."""
    eng = LocalEngine()
    ok = eng.run(["true"], root=tmp_path, mounts={}, env=ENV)
    bad = eng.run(["sh", "-c", "exit 3"], root=tmp_path, mounts={}, env=ENV)
    assert ok.ok
    assert bad.returncode == 3
    assert eng.running(tmp_path) == 0


def test_local_engine_captures_output_with_clean_env(tmp_path, monkeypatch):
    """Verify captured output and that nothing leaks from the host environment."""
    monkeypatch.setenv("STUDIOKIT_LEAK", "yes")
    eng = LocalEngine()
    status = eng.run(
        ["sh", "-c", 'echo "${STUDIOKIT_LEAK:-clean} $(pwd -P)"'],
        root=tmp_path,
        mounts={},
        env=ENV,
        capture=True,
    )
    assert status.output.split() == ["clean", str(tmp_path.resolve())]


def test_local_engine_mounts_are_symlinks(tmp_path):
    """Verify mounts appear below the root and are released afterwards."""
    host = tmp_path / "host"
    host.mkdir()
    (host / "hello.txt").write_text("hi\n")
    root = tmp_path / "root"
    root.mkdir()
    eng = LocalEngine()

    status = eng.run(["cat", "src/hello.txt"], root=root, mounts={str(host): "src"}, env=ENV, capture=True)
    assert status.output == "hi\n"
    assert (root / "src").is_symlink()

    eng.release_mounts(root, {str(host): "src"})
    assert not (root / "src").exists()
    assert (host / "hello.txt").is_file()


def test_docker_command_layout():
    """Verify the docker run vector for a studio command."""
    eng = DockerEngine(image="img:1", platform="linux/amd64", extra_volumes={"/store": "/store"})
    cmd = eng.command(
        ["make", "install"],
        root=Path("/s/r"),
        mounts={"/work/src": "src"},
        env={"A": "1"},
        cwd=None,
        name="n1",
    )
    assert cmd == [
        "docker", "run", "--rm", "-i", "--name", "n1",
        "--platform", "linux/amd64",
        "-v", "/s/r:/s/r",
        "-v", "/work/src:/s/r/src",
        "-v", "/store:/store",
        "-e", "A=1",
        "-w", "/s/r",
        "img:1", "make", "install",
    ]


def test_docker_run_and_terminate(monkeypatch, tmp_path):
    """Verify docker runs are tracked and killed on terminate."""
    calls = {"popen": [], "run": [], "signals": []}
    eng = DockerEngine(image="img")

    class FakePopen:
        pid = 999999
        returncode = 0

        def __init__(self, cmd, **kwargs):
            calls["popen"].append((cmd, kwargs))

        def communicate(self):
            # destroy while the container is running
            eng.terminate(tmp_path, grace=0)
            return "", None

        def wait(self, timeout=None):
            return 0

    def fake_run(cmd, **kwargs):
        calls["run"].append(cmd)
        return subprocess.CompletedProcess(cmd, 0)

    monkeypatch.setattr(subprocess, "Popen", FakePopen)
    monkeypatch.setattr(subprocess, "run", fake_run)
    monkeypatch.setattr(
        ExecutionEngine, "_signal_group", staticmethod(lambda proc, sig: calls["signals"].append(sig))
    )

    status = eng.run(["true"], root=tmp_path, mounts={}, env={"A": "1"})
    assert status.ok
    cmd, kwargs = calls["popen"][0]
    assert cmd[:3] == ["docker", "run", "--rm"]
    assert kwargs["env"] is None
    assert kwargs["start_new_session"] is True

    (kill,) = calls["run"]
    assert kill[:2] == ["docker", "kill"]
    assert kill[2] == cmd[cmd.index("--name") + 1]
    assert len(calls["signals"]) == 1
