"""Model artifact resolution.

The model ships inside a read-only asset bundle. Before a session can be
opened it is copied once into a writable cache directory under a fixed
filename; after that the cached copy is reused as-is.
"""

import os
import shutil
import tempfile
from abc import ABC, abstractmethod
from contextlib import suppress
from pathlib import Path
from typing import BinaryIO, List, Optional, Sequence

import structlog

from libs.common.metrics import measure_time
from ..runtime.errors import ModelLoadError

logger = structlog.get_logger("model_bridge.artifact")


class AssetBundle(ABC):
    """Read-only source of packaged files addressed by relative path."""

    @abstractmethod
    def open(self, relative_path: str) -> BinaryIO:
        """Open an asset for binary reading.

        Raises ``FileNotFoundError`` when the bundle has no such asset.
        """


class DirectoryAssetBundle(AssetBundle):
    """Asset bundle backed by a directory on disk."""

    def __init__(self, root: str):
        self.root = Path(root)

    def open(self, relative_path: str) -> BinaryIO:
        path = self.root / relative_path
        if not path.is_file():
            raise FileNotFoundError(f"Asset not found: {path}")
        return open(path, "rb")


class ModelArtifact:
    """A model file materialized in the cache directory.

    Parameters
    - bundle: Where the packaged model lives
    - cache_dir: Writable directory holding the cached copy
    - filename: Fixed name of the cached file (e.g. ``best.onnx``)
    - candidate_paths: Relative asset paths tried in order; first hit wins
    """

    def __init__(
        self,
        bundle: AssetBundle,
        cache_dir: str,
        filename: str,
        candidate_paths: Sequence[str]
    ):
        self.bundle = bundle
        self.cache_dir = Path(cache_dir)
        self.filename = filename
        self.candidate_paths: List[str] = list(candidate_paths)

    @property
    def path(self) -> Path:
        return self.cache_dir / self.filename

    def is_cached(self) -> bool:
        """True when a non-empty copy already exists in the cache."""
        try:
            return self.path.is_file() and self.path.stat().st_size > 0
        except OSError:
            return False

    def resolve(self) -> Path:
        """Return the cached model path, copying it out of the bundle if needed.

        Raises ``ModelLoadError`` when no candidate asset path can be opened or the
        cache cannot be written.
        """
        if self.is_cached():
            logger.debug("Model file already exists, using cached version", path=str(self.path))
            return self.path

        logger.info("Model file doesn't exist, copying from assets", path=str(self.path))
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ModelLoadError(f"Cannot create model cache directory {self.cache_dir}: {e}", cause=e) from e

        last_error: Optional[OSError] = None
        for asset_path in self.candidate_paths:
            try:
                source = self.bundle.open(asset_path)
            except FileNotFoundError as e:
                logger.debug("Asset path not found", asset_path=asset_path, error=str(e))
                continue
            except OSError as e:
                logger.warning("Asset path not readable", asset_path=asset_path, error=str(e))
                last_error = e
                continue

            # Only open failures fall through to the next path.
            try:
                with source:
                    self._write_atomically(source)
            except OSError as e:
                raise ModelLoadError(f"Failed to copy model from {asset_path}: {e}", cause=e) from e

            logger.info("Copied model from assets", asset_path=asset_path, path=str(self.path))
            return self.path

        raise ModelLoadError(
            "Model file not found in any asset path. Tried: " + ", ".join(self.candidate_paths),
            cause=last_error
        )

    @measure_time("artifact.copy")
    def _write_atomically(self, source: BinaryIO) -> None:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.filename}.", dir=self.cache_dir)
        try:
            with os.fdopen(fd, "wb") as target:
                shutil.copyfileobj(source, target)
            os.replace(tmp_name, self.path)
        except BaseException:
            with suppress(FileNotFoundError):
                os.unlink(tmp_name)
            raise
