"""Tests for model artifact resolution."""

import io

import pytest

from app.loaders.artifact import AssetBundle, DirectoryAssetBundle, ModelArtifact
from app.runtime.errors import ModelLoadError

CANDIDATES = ["flutter_assets/assets/best.onnx", "assets/best.onnx", "best.onnx"]


def make_artifact(root, cache_dir):
    return ModelArtifact(
        bundle=DirectoryAssetBundle(str(root)),
        cache_dir=str(cache_dir),
        filename="best.onnx",
        candidate_paths=CANDIDATES
    )


def write_asset(root, relative_path, content):
    path = root / relative_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)


def test_copies_model_into_cache(tmp_path):
    write_asset(tmp_path / "bundle", "assets/best.onnx", b"model")
    artifact = make_artifact(tmp_path / "bundle", tmp_path / "cache")

    assert not artifact.is_cached()
    path = artifact.resolve()

    assert path == tmp_path / "cache" / "best.onnx"
    assert path.read_bytes() == b"model"
    assert artifact.is_cached()


def test_first_candidate_path_wins(tmp_path):
    bundle = tmp_path / "bundle"
    write_asset(bundle, "flutter_assets/assets/best.onnx", b"flutter")
    write_asset(bundle, "assets/best.onnx", b"assets")
    write_asset(bundle, "best.onnx", b"root")

    path = make_artifact(bundle, tmp_path / "cache").resolve()

    assert path.read_bytes() == b"flutter"


def test_bare_filename_is_last_resort(tmp_path):
    write_asset(tmp_path / "bundle", "best.onnx", b"root")

    path = make_artifact(tmp_path / "bundle", tmp_path / "cache").resolve()

    assert path.read_bytes() == b"root"


def test_cached_copy_is_reused(tmp_path):
    bundle = tmp_path / "bundle"
    write_asset(bundle, "assets/best.onnx", b"v1")
    artifact = make_artifact(bundle, tmp_path / "cache")
    artifact.resolve()

    write_asset(bundle, "assets/best.onnx", b"v2")
    path = artifact.resolve()

    assert path.read_bytes() == b"v1"


def test_empty_cached_file_is_recopied(tmp_path):
    write_asset(tmp_path / "bundle", "assets/best.onnx", b"model")
    cache = tmp_path / "cache"
    cache.mkdir()
    (cache / "best.onnx").write_bytes(b"")
    artifact = make_artifact(tmp_path / "bundle", cache)

    assert not artifact.is_cached()
    assert artifact.resolve().read_bytes() == b"model"


def test_no_temporary_files_left_behind(tmp_path):
    write_asset(tmp_path / "bundle", "assets/best.onnx", b"model")
    make_artifact(tmp_path / "bundle", tmp_path / "cache").resolve()

    assert [p.name for p in (tmp_path / "cache").iterdir()] == ["best.onnx"]


def test_missing_model_lists_tried_paths(tmp_path):
    (tmp_path / "bundle").mkdir()
    artifact = make_artifact(tmp_path / "bundle", tmp_path / "cache")

    with pytest.raises(ModelLoadError) as exc_info:
        artifact.resolve()

    message = str(exc_info.value)
    assert message.startswith("Model file not found in any asset path")
    for candidate in CANDIDATES:
        assert candidate in message
    assert not artifact.path.exists()


class UnreadableBundle(AssetBundle):
    def open(self, relative_path):
        raise PermissionError(f"permission denied: {relative_path}")


class FailingStream(io.RawIOBase):
    def readable(self):
        return True

    def readinto(self, buffer):
        raise OSError("device error")


class BrokenBundle(AssetBundle):
    def open(self, relative_path):
        return FailingStream()


def test_unreadable_asset_is_model_load_error(tmp_path):
    artifact = ModelArtifact(UnreadableBundle(), str(tmp_path / "cache"), "best.onnx", CANDIDATES)

    with pytest.raises(ModelLoadError) as exc_info:
        artifact.resolve()
    assert isinstance(exc_info.value.cause, PermissionError)


class PartlyUnreadableBundle(DirectoryAssetBundle):
    """Directory bundle whose first candidate path cannot be opened."""

    def open(self, relative_path):
        if relative_path == CANDIDATES[0]:
            raise PermissionError(f"permission denied: {relative_path}")
        return super().open(relative_path)


def test_unreadable_candidate_falls_through_to_next(tmp_path):
    bundle = tmp_path / "bundle"
    write_asset(bundle, CANDIDATES[0], b"locked")
    write_asset(bundle, "assets/best.onnx", b"assets")
    artifact = ModelArtifact(
        PartlyUnreadableBundle(str(bundle)), str(tmp_path / "cache"), "best.onnx", CANDIDATES
    )

    assert artifact.resolve().read_bytes() == b"assets"


def test_failed_copy_leaves_cache_clean(tmp_path):
    artifact = ModelArtifact(BrokenBundle(), str(tmp_path / "cache"), "best.onnx", CANDIDATES)

    with pytest.raises(ModelLoadError):
        artifact.resolve()

    assert list((tmp_path / "cache").iterdir()) == []
