"""End-to-end tests for the build pipeline."""

import pytest

from studiokit.errors import NoBuildStep, StageFailed, UnsatisfiedDependency
from studiokit.lifecycle import LifecycleEngine
from studiokit.pipelines import build, build_all, studio_root_for
from studiokit.plan import PlanIndex, load
from studiokit.studio import StudioManager

from .utils import write_plan

INSTALL = 'mkdir -p "$pkg_prefix/bin"\necho "echo $pkg_name" > "$pkg_prefix/bin/$pkg_name"'


@pytest.fixture
def services(store):
    manager = StudioManager(grace=1.0)
    return {"store": store, "manager": manager, "lifecycle": LifecycleEngine(manager, store=store)}


def _plan(tmp_path, name, **extra):
    doc = {"pkg_name": name, "pkg_origin": "chef", "pkg_version": "1.0", "do_build": "true", "do_install": INSTALL}
    doc.update(extra)
    return load(write_plan(tmp_path / "plans", name, doc))


def test_build_and_install(tmp_path, config, services, store):
    """Verify a plan is built, installed and its studio destroyed."""
    result = build(_plan(tmp_path, "hello"), config, **services)

    assert result.installed is not None
    assert result.installed.ident == result.ident
    assert (result.installed.path / "bin" / "hello").read_text() == "echo hello\n"
    assert store.is_satisfied(result.ident)
    assert not config.root.exists()


def test_build_without_install_keeps_studio(tmp_path, config, services, store):
    """Verify --no-install and --keep behaviour."""
    result = build(_plan(tmp_path, "hello"), config, install=False, keep_studio=True, **services)
    assert result.installed is None
    assert result.artifact.path.is_file()
    assert not store.installed(result.ident)
    assert config.root.is_dir()
    services["manager"].destroy(config.root)


def test_dependencies_are_built_first(tmp_path, config, services, store):
    """Verify an unsatisfied dependency stops the build before any studio exists."""
    lib = _plan(tmp_path, "lib")
    app = _plan(tmp_path, "app", pkg_deps=["chef/lib"])
    index = PlanIndex([lib, app])

    with pytest.raises(UnsatisfiedDependency) as exc:
        build(app, config, index=index, **services)
    assert exc.value.idents == ["chef/lib"]
    assert not config.root.exists()

    build(lib, config, index=index, **services)
    result = build(app, config, index=index, **services)
    assert [str(i) for i in result.graph.idents()] == ["chef/lib"]
    assert result.installed.manifest.runtime_deps[0].key == "chef/lib"


def test_unbuildable_plan_fails_before_provisioning(tmp_path, config, services):
    """Verify plans with nothing to build never provision a studio."""
    plan = load({"pkg_name": "empty", "pkg_origin": "chef", "pkg_version": "1.0"})
    with pytest.raises(NoBuildStep):
        build(plan, config, **services)
    assert not config.root.exists()


def test_failed_stage_destroys_studio(tmp_path, config, services, store):
    """Verify a failing stage installs nothing and removes the studio."""
    plan = _plan(tmp_path, "broken", do_build="exit 7")
    with pytest.raises(StageFailed) as exc:
        build(plan, config, **services)
    assert exc.value.stage == "build"
    assert exc.value.status.returncode == 7
    assert not config.root.exists()
    assert store.installed(plan.ident) == []


def test_build_all_isolates_failures(tmp_path, config, services, store):
    """Verify independent plans build in parallel and failures stay local."""
    plans = [
        _plan(tmp_path, "one"),
        _plan(tmp_path, "two", do_build="exit 1"),
        _plan(tmp_path, "three"),
    ]
    outcomes = build_all(plans, config, max_workers=3, **services)

    assert set(outcomes) == {"chef/one/1.0", "chef/two/1.0", "chef/three/1.0"}
    assert isinstance(outcomes["chef/two/1.0"], StageFailed)
    for name in ("one", "three"):
        assert outcomes[f"chef/{name}/1.0"].installed is not None
    for plan in plans:
        assert not studio_root_for(plan, config).exists()
