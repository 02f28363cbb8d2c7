"""Tests for the hook lifecycle engine."""

import hashlib
import tarfile
import threading
import time
from datetime import datetime, timezone

import pytest

from studiokit.errors import NoBuildStep, PatchRejected, StageFailed
from studiokit.io import PatchApplier
from studiokit.lifecycle import LifecycleEngine, StageState
from studiokit.plan import HookName, PlanIndex, load
from studiokit.resolver import resolve
from studiokit.studio import StudioManager

from .utils import write_plan

RELEASE = "20240102030405"


def _clock():
    return datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class FakePatcher(PatchApplier):
    """Accepts every patch except ``b.patch``."""

    applied = []

    def __init__(self, manager, studio, env=None):
        self.studio = studio

    def apply(self, patch, tree):
        FakePatcher.applied.append(patch.name)
        if patch.name == "b.patch":
            raise PatchRejected(patch)


@pytest.fixture
def manager():
    return StudioManager(grace=1.0)


@pytest.fixture
def engine(manager, store):
    FakePatcher.applied = []
    return LifecycleEngine(manager, store=store, patcher_factory=FakePatcher, clock=_clock)


def _setup(tmp_path, config, manager, doc, files=None, store=None):
    plan = load(write_plan(tmp_path / "plans", doc["pkg_name"], doc, files))
    graph = resolve(plan, config, index=PlanIndex(), store=store)
    studio = manager.create(config.studio_type, config.root, config)
    return plan, graph, studio


def _doc(**extra):
    doc = {"pkg_name": "hello", "pkg_origin": "chef", "pkg_version": "1.0"}
    doc.update(extra)
    return doc


def test_successful_build_produces_artifact(tmp_path, config, manager, engine):
    """Verify a scripted build runs every stage and packs the prefix."""
    doc = _doc(
        pkg_binary_path=["bin"],
        do_build='echo "echo hi" > hello\necho "$pkg_name $pkg_origin $pkg_version $pkg_release" > meta.txt',
        do_install=(
            'mkdir -p "$pkg_prefix/bin"\n'
            'cp hello "$pkg_prefix/bin/hello"\n'
            'cp meta.txt "$pkg_prefix/"\n'
            'cp "$PLAN_CONTEXT/data.txt" "$pkg_prefix/"\n'
            'echo "$pkg_prefix" > "$pkg_prefix/prefix.txt"'
        ),
    )
    plan, graph, studio = _setup(tmp_path, config, manager, doc, {"data.txt": "shipped\n"})

    result = engine.run(plan, studio, graph=graph)

    assert str(result.ident) == f"chef/hello/1.0/{RELEASE}"
    assert [r.state for r in result.stages] == [
        StageState.SUCCEEDED,
        StageState.SUCCEEDED,
        StageState.SKIPPED,
        StageState.SUCCEEDED,
    ]
    assert result.artifact.path.parent == config.results_dir
    prefix = studio.prefix_for(result.ident)
    assert (prefix / "meta.txt").read_text() == f"hello chef 1.0 {RELEASE}\n"
    assert (prefix / "prefix.txt").read_text().strip() == str(prefix)
    with tarfile.open(result.artifact.path) as tf:
        names = tf.getnames()
        assert {"bin/hello", "data.txt", "meta.txt"} <= set(names)
        manifest = tf.extractfile("MANIFEST.json").read().decode()
    assert '"studio_type": "full"' in manifest


def test_second_patch_rejected_stops_prepare(tmp_path, config, manager, engine):
    """Verify a rejected patch fails prepare and nothing later runs."""
    marker = tmp_path / "build-ran"
    doc = _doc(
        do_prepare={"default": True, "patches": ["a.patch", "b.patch", "c.patch"]},
        do_build=f'touch "{marker}"',
    )
    plan, graph, studio = _setup(tmp_path, config, manager, doc)

    with pytest.raises(StageFailed) as exc:
        engine.run(plan, studio, graph=graph)

    assert exc.value.stage == "prepare"
    assert isinstance(exc.value.cause, PatchRejected)
    assert "b.patch" in str(exc.value)
    assert FakePatcher.applied == ["a.patch", "b.patch"]
    assert not marker.exists()
    assert not config.results_dir.exists() or not list(config.results_dir.iterdir())


def test_default_build_without_makefile(tmp_path, config, manager, engine):
    """Verify the default build without configure or Makefile fails the build stage."""
    plan, graph, studio = _setup(tmp_path, config, manager, _doc())
    with pytest.raises(StageFailed) as exc:
        engine.run(plan, studio, graph=graph)
    assert exc.value.stage == "build"
    assert isinstance(exc.value.cause, NoBuildStep)


def test_failing_check_stage(tmp_path, config, manager, engine):
    """Verify check runs only when requested and its exit status is reported."""
    marker = tmp_path / "installed"
    doc = _doc(do_build="true", do_check="exit 3", do_install=f'touch "{marker}"')
    plan, graph, studio = _setup(tmp_path, config, manager, doc)

    with pytest.raises(StageFailed) as exc:
        engine.run(plan, studio, graph=graph, check=True)
    assert exc.value.stage == "check"
    assert exc.value.status.returncode == 3
    assert "exit 3" in str(exc.value)
    assert not marker.exists()


def test_default_prepare_unpacks_source(tmp_path, config, manager, engine):
    """Verify pkg_source is fetched, verified and unpacked for the build."""
    upstream = tmp_path / "hello-1.0"
    upstream.mkdir()
    (upstream / "README").write_text("hello\n")
    archive = tmp_path / "hello-1.0.tar.gz"
    with tarfile.open(archive, "w:gz") as tf:
        tf.add(upstream, arcname="hello-1.0")
    shasum = hashlib.sha256(archive.read_bytes()).hexdigest()

    doc = _doc(
        pkg_source=archive.as_uri().replace("hello-1.0", "${pkg_name}-${pkg_version}"),
        pkg_shasum=shasum,
        do_build='test -f README\ntest "$(basename "$PWD")" = hello-1.0',
    )
    plan, graph, studio = _setup(tmp_path, config, manager, doc)
    result = engine.run(plan, studio, graph=graph)

    assert (studio.cache_dir / "hello-1.0.tar.gz").is_file()
    assert (studio.build_dir / "hello-1.0" / "README").is_file()
    assert result.stages[1].state is StageState.SUCCEEDED


def test_dependency_binaries_on_path(tmp_path, config, manager, engine, store, artifact_factory):
    """Verify installed dependencies' binary dirs lead the stage PATH."""
    store.install(artifact_factory("chef/dep/2.0/20240101000000"))
    doc = _doc(pkg_deps=["chef/dep"], do_build='echo "$PATH" > "$pkg_prefix/path.txt"')
    plan, graph, studio = _setup(tmp_path, config, manager, doc, store=store)

    result = engine.run(plan, studio, graph=graph)

    path = (studio.prefix_for(result.ident) / "path.txt").read_text().strip().split(":")
    dep_bin = store.entry_dir(store.latest(graph.idents()[0]).ident) / "bin"
    assert path[0] == str(dep_bin)
    assert path[-3:] == ["/usr/local/bin", "/usr/bin", "/bin"]


def test_destroy_cancels_running_stage(tmp_path, config, manager, engine):
    """Verify destroying the studio mid-stage fails the build as cancelled."""
    doc = _doc(do_build="sleep 30")
    plan, graph, studio = _setup(tmp_path, config, manager, doc)
    outcome = {}

    def run():
        try:
            engine.run(plan, studio, graph=graph)
        except StageFailed as exc:
            outcome["error"] = exc

    t = threading.Thread(target=run)
    t.start()
    deadline = time.monotonic() + 5
    while manager.engine.running(studio.root) == 0 and time.monotonic() < deadline:
        time.sleep(0.01)
    manager.destroy(studio)
    t.join(timeout=10)

    error = outcome["error"]
    assert error.stage == HookName.BUILD.value
    assert error.cancelled
    assert "studio destroyed" in str(error)


def test_absolute_prefix_links_survive_install(tmp_path, config, manager, engine, store):
    """Verify links made with $pkg_prefix install as working links."""
    doc = _doc(
        do_build="true",
        do_install=(
            'mkdir -p "$pkg_prefix/bin"\n'
            'echo "echo hi" > "$pkg_prefix/bin/hello"\n'
            'ln -s "$pkg_prefix/bin/hello" "$pkg_prefix/bin/hi"'
        ),
    )
    plan, graph, studio = _setup(tmp_path, config, manager, doc)

    result = engine.run(plan, studio, graph=graph)
    installed = store.install(result.artifact)

    link = installed.path / "bin" / "hi"
    assert link.is_symlink()
    assert link.read_text() == "echo hi\n"


def test_prefix_link_outside_fails_install_stage(tmp_path, config, manager, engine):
    """Verify a link leaving the prefix fails the install stage."""
    doc = _doc(do_build="true", do_install='mkdir -p "$pkg_prefix"\nln -s /etc/hosts "$pkg_prefix/hosts"')
    plan, graph, studio = _setup(tmp_path, config, manager, doc)

    with pytest.raises(StageFailed) as exc:
        engine.run(plan, studio, graph=graph)
    assert exc.value.stage == "install"
    assert "points outside the install prefix" in str(exc.value)
