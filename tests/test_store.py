"""Tests for artifacts, the package store and binary extraction."""

import tarfile
import threading

import pytest

from studiokit.errors import AlreadyInstalled, CorruptArtifact
from studiokit.models import PackageIdent
from studiokit.store import Artifact, ArtifactManifest, extract_binaries, pack_artifact, read_manifest
from studiokit.store.artifact import MANIFEST_NAME

from .utils import make_artifact

IDENT = "chef/tool/1.0/20240101000000"


def test_artifact_layout(artifact_factory):
    """Verify the manifest is the first member and the name follows the ident."""
    art = artifact_factory(IDENT, {"bin/tool": "#!/bin/sh\n", "share/doc": "x"})
    assert art.path.name == "chef-tool-1.0-20240101000000.tar.gz"
    assert art.checksum.startswith("sha256:")
    with tarfile.open(art.path) as tf:
        names = tf.getnames()
        assert names[0] == MANIFEST_NAME
        assert all(m.mtime == 0 and m.uid == 0 for m in tf.getmembers())
    assert read_manifest(art.path).binary_path == ("bin",)


def test_packing_is_reproducible(tmp_path):
    """Verify identical prefixes produce identical checksums."""
    files = {"bin/tool": "#!/bin/sh\necho hi\n", "lib/a.so": "abc"}
    first = make_artifact(tmp_path, IDENT, files, out="one")
    second = make_artifact(tmp_path, IDENT, files, out="two")
    assert first.checksum == second.checksum


def test_install_is_idempotent(store, artifact_factory):
    """Verify re-installing the same artifact creates no duplicate entry."""
    art = artifact_factory(IDENT)
    first = store.install(art)
    second = store.install(art)

    assert first == second
    assert (first.path / "bin" / "tool").is_file()
    assert len(store.installed(PackageIdent.parse("chef/tool"))) == 1
    assert store.is_satisfied(PackageIdent.parse("chef/tool/1.0"))
    assert not store.is_satisfied(PackageIdent.parse("chef/tool/2.0"))
    with pytest.raises(AlreadyInstalled):
        store.install(art, strict=True)


def test_concurrent_installs(store, artifact_factory):
    """Verify parallel installs of one artifact leave exactly one entry."""
    art = artifact_factory(IDENT)
    results, errors = [], []

    def worker():
        try:
            results.append(store.install(art))
        except Exception as exc:  # pragma: no cover - reported below
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len({r.checksum for r in results}) == 1
    assert len(store.installed(PackageIdent.parse("chef/tool"))) == 1
    leftovers = [p.name for p in store.entry_dir(art.ident).parent.iterdir()]
    assert leftovers == ["20240101000000"]


def test_different_content_same_ident_is_corrupt(store, artifact_factory):
    """Verify an installed identity cannot be replaced with other content."""
    store.install(artifact_factory(IDENT))
    other = artifact_factory(IDENT, {"bin/tool": "different"}, out="other")
    with pytest.raises(CorruptArtifact):
        store.install(other)


def test_checksum_and_manifest_are_verified(store, artifact_factory):
    """Verify tampered checksums and mismatched identities are rejected."""
    art = artifact_factory(IDENT)
    with pytest.raises(CorruptArtifact):
        store.install(art.model_copy(update={"checksum": "sha256:" + "0" * 64}))
    wrong = art.model_copy(update={"ident": PackageIdent.parse("chef/other/1.0/20240101000000")})
    with pytest.raises(CorruptArtifact):
        store.install(wrong)
    partial = art.model_copy(update={"ident": PackageIdent.parse("chef/tool/1.0")})
    with pytest.raises(CorruptArtifact):
        store.install(partial)
    assert store.installed(PackageIdent.parse("chef/tool")) == []


def test_from_file_rejects_garbage(tmp_path):
    """Verify unreadable artifact files raise CorruptArtifact."""
    with pytest.raises(CorruptArtifact):
        Artifact.from_file(tmp_path / "missing.tar.gz")
    junk = tmp_path / "junk.tar.gz"
    junk.write_bytes(b"not a tarball")
    with pytest.raises(CorruptArtifact):
        Artifact.from_file(junk)


def test_latest_is_most_recent_install(store, artifact_factory):
    """Verify the newest install wins when several releases match."""
    store.install(artifact_factory("chef/tool/1.0/20240101000000", {"bin/tool": "old"}))
    store.install(artifact_factory("chef/tool/1.1/20240202000000", {"bin/tool": "new"}))
    latest = store.latest(PackageIdent.parse("chef/tool"))
    assert latest.ident.release == "20240202000000"
    assert store.latest(PackageIdent.parse("chef/tool/1.0")).ident.version == "1.0"


def test_extract_binaries(store, artifact_factory, tmp_path):
    """Verify extraction resets the destination and copies the newest binaries."""
    store.install(
        artifact_factory(
            "chef/tool/1.0/20240101000000",
            {"bin/tool": "old", "bin/helper": "helper", "libexec/only-old": "x"},
        )
    )
    store.install(artifact_factory("chef/tool/1.1/20240202000000", {"bin/tool": "new"}))

    dest = tmp_path / "bins"
    dest.mkdir()
    (dest / "stale").write_text("stale")

    copied = extract_binaries(
        store, PackageIdent.parse("chef/tool"), ["tool", "helper", "only-old", "nope"], dest
    )

    assert [p.name for p in copied] == ["tool", "helper", "only-old"]
    assert (dest / "tool").read_text() == "new"
    assert (dest / "helper").read_text() == "helper"
    assert not (dest / "stale").exists()
    assert not (dest / "nope").exists()


def test_extract_without_installed_package(store, tmp_path):
    """Verify extracting from an unknown package leaves an empty destination."""
    dest = tmp_path / "bins"
    assert extract_binaries(store, PackageIdent.parse("chef/ghost"), ["x"], dest) == []
    assert dest.is_dir() and not any(dest.iterdir())


def _manifest(ident=IDENT):
    return ArtifactManifest(ident=PackageIdent.parse(ident), binary_path=("bin",), studio_type="full")


def test_prefix_symlinks_are_packed_relative(store, tmp_path):
    """Verify absolute links into the prefix install as working relative links."""
    prefix = tmp_path / "prefix"
    (prefix / "bin").mkdir(parents=True)
    (prefix / "lib").mkdir()
    (prefix / "bin" / "tool").write_text("#!/bin/sh\n")
    (prefix / "bin" / "t").symlink_to(prefix / "bin" / "tool")
    (prefix / "lib" / "tool").symlink_to(prefix / "bin" / "tool")
    (prefix / "bin" / "rel").symlink_to("tool")

    art = pack_artifact(prefix, _manifest(), tmp_path / "out")
    with tarfile.open(art.path) as tf:
        links = {m.name: m.linkname for m in tf.getmembers() if m.issym()}
    assert links == {"bin/rel": "tool", "bin/t": "tool", "lib/tool": "../bin/tool"}

    installed = store.install(art)
    assert (installed.path / "bin" / "t").read_text() == "#!/bin/sh\n"
    assert (installed.path / "lib" / "tool").read_text() == "#!/bin/sh\n"


@pytest.mark.parametrize("target", ["/etc/passwd", "../../outside"])
def test_prefix_symlinks_escaping_are_refused(tmp_path, target):
    """Verify links leaving the prefix fail packing with a clear message."""
    prefix = tmp_path / "prefix"
    (prefix / "bin").mkdir(parents=True)
    (prefix / "bin" / "bad").symlink_to(target)

    with pytest.raises(CorruptArtifact, match="points outside the install prefix"):
        pack_artifact(prefix, _manifest(), tmp_path / "out")
    assert not list((tmp_path / "out").iterdir())
