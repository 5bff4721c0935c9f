"""Artifact store: locate, unpack and validate release archives."""

from __future__ import annotations

import os
import shutil
import tempfile
import time
import zipfile
from pathlib import Path
from typing import Optional

import structlog

from app_deployer.core.config import Settings
from app_deployer.core.exceptions import ArtifactInvalid, ExtractionFailed
from app_deployer.core.models import ExtractedRelease, ReleaseArtifact
from app_deployer.deploy.fetch import compute_sha256, fetch_artifact_to_path

logger = structlog.get_logger()

# Download and extraction targets inside an attempt temp dir; they must differ
DOWNLOAD_NAME = "artifact.zip"
EXTRACT_DIR_NAME = "release"


class ArtifactStore:
    """Turns a release archive into a verified directory under the staging root."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.staging_root = Path(settings.staging_root)

    def new_temp_dir(self) -> Path:
        """Create a uniquely named extraction directory.

        The name carries the epoch so operators can tell runs apart; mkdtemp
        guarantees uniqueness when two runs start within the same second.
        """
        self.staging_root.mkdir(parents=True, exist_ok=True)
        prefix = f"{self.settings.staging_prefix}-{int(time.time())}-"
        return Path(tempfile.mkdtemp(prefix=prefix, dir=self.staging_root))

    def locate(self, source: str, dest_dir: Path, sha256: Optional[str] = None) -> Path:
        """Resolve source to a local archive path.

        Remote sources (http(s)://, s3://) are downloaded into dest_dir.

        Raises:
            ArtifactInvalid: If the archive cannot be found or fetched
        """
        artifact = ReleaseArtifact(source=source)
        if not artifact.is_remote:
            path = Path(source).expanduser()
            if not path.is_file():
                raise ArtifactInvalid(f"Deployment ZIP file not found: {source}")
            if not os.access(path, os.R_OK):
                raise ArtifactInvalid(f"Deployment ZIP file is not readable: {source}")
            if sha256 and compute_sha256(path) != sha256.lower():
                raise ArtifactInvalid(f"SHA256 mismatch for {source}")
            return path

        try:
            return fetch_artifact_to_path(
                source,
                dest_dir / DOWNLOAD_NAME,
                max_size_bytes=self.settings.max_artifact_size_bytes,
                sha256=sha256,
            )
        except (RuntimeError, ValueError) as e:
            raise ArtifactInvalid(f"Could not fetch artifact {source}: {e}") from e

    def validate(self, artifact_path: Path, temp_dir: Optional[Path] = None) -> ExtractedRelease:
        """Extract artifact_path into a fresh temp dir and verify required files.

        Args:
            artifact_path: Local path to the zip archive
            temp_dir: Extraction directory; a new one is created when omitted

        Returns:
            The extracted release

        Raises:
            ArtifactInvalid: If the path is unusable or required files are missing
            ExtractionFailed: If the archive cannot be unpacked
        """
        artifact = ReleaseArtifact(
            source=str(artifact_path),
            entry_file=self.settings.entry_file,
            manifest_file=self.settings.manifest_file,
        )
        if not artifact_path.is_file():
            raise ArtifactInvalid(f"Deployment ZIP file not found: {artifact_path}")
        if not os.access(artifact_path, os.R_OK):
            raise ArtifactInvalid(f"Deployment ZIP file is not readable: {artifact_path}")

        owns_temp_dir = temp_dir is None
        if temp_dir is None:
            temp_dir = self.new_temp_dir()
        extract_dir = temp_dir / EXTRACT_DIR_NAME

        logger.info("Extracting deployment artifact", artifact=str(artifact_path), dest=str(extract_dir))
        try:
            with zipfile.ZipFile(artifact_path, "r") as zf:
                bad_member = zf.testzip()
                if bad_member is not None:
                    raise ExtractionFailed(f"Corrupt archive member: {bad_member}")
                self._safe_extract_zip(zf, extract_dir)
        except ExtractionFailed:
            self._discard(temp_dir, extract_dir, owns_temp_dir)
            raise
        except (zipfile.BadZipFile, zipfile.LargeZipFile, NotImplementedError, OSError, EOFError) as e:
            self._discard(temp_dir, extract_dir, owns_temp_dir)
            raise ExtractionFailed(f"Failed to extract artifact: {e}") from e

        root = self._release_root(extract_dir, artifact)
        missing = [
            name for name in (artifact.entry_file, artifact.manifest_file)
            if not (root / name).is_file()
        ]
        if missing:
            self._discard(temp_dir, extract_dir, owns_temp_dir)
            raise ArtifactInvalid(f"{', '.join(missing)} not found in artifact")

        logger.info("Artifact verification completed", release_root=str(root))
        return ExtractedRelease(
            artifact=artifact,
            path=root,
            temp_dir=temp_dir,
            sha256=compute_sha256(artifact_path),
        )

    @staticmethod
    def _release_root(extract_dir: Path, artifact: ReleaseArtifact) -> Path:
        """Use a single wrapping top-level folder as the root when the files live there."""
        if (extract_dir / artifact.entry_file).exists():
            return extract_dir
        entries = [p for p in extract_dir.iterdir() if p.name != "__MACOSX"]
        if len(entries) == 1 and entries[0].is_dir():
            return entries[0]
        return extract_dir

    @staticmethod
    def _discard(temp_dir: Path, extract_dir: Path, owns_temp_dir: bool) -> None:
        shutil.rmtree(temp_dir if owns_temp_dir else extract_dir, ignore_errors=True)

    @staticmethod
    def _safe_extract_zip(zf: zipfile.ZipFile, dest_dir: Path) -> None:
        """Safely extract a zipfile to dest_dir, preventing zip-slip.

        Raises ExtractionFailed on path traversal.
        """
        dest_dir.mkdir(parents=True, exist_ok=True)
        base = dest_dir.resolve()
        for member in zf.infolist():
            member_path = Path(member.filename)
            if member_path.is_absolute() or ".." in member_path.parts:
                raise ExtractionFailed("Zip contains unsafe paths (zip-slip)")
            target = (base / member_path).resolve()
            if target != base and base not in target.parents:
                raise ExtractionFailed("Zip extraction escaped destination (zip-slip)")
            if member.is_dir():
                target.mkdir(parents=True, exist_ok=True)
            else:
                target.parent.mkdir(parents=True, exist_ok=True)
                with zf.open(member, "r") as src, open(target, "wb") as dst:
                    shutil.copyfileobj(src, dst)
                mode = (member.external_attr >> 16) & 0o777
                if mode:
                    os.chmod(target, mode)
