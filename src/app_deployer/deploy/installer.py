"""Release installer: swap an extracted release into the live directory."""

from __future__ import annotations

import os
import shutil
import subprocess
import time
from pathlib import Path
from typing import List

import structlog

from app_deployer.core.config import Settings
from app_deployer.core.exceptions import DeployVerificationFailed, DependencyInstallFailed, InstallError
from app_deployer.utils.fs import chown_tree, clear_directory, remove_path

logger = structlog.get_logger()


class ReleaseInstaller:
    """Copies releases into the deployment directory and installs dependencies."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def install(self, extracted_path: Path, deploy_path: Path) -> None:
        """Replace the contents of deploy_path with extracted_path.

        Files are first copied to a sibling staging directory on the same
        filesystem, verified, and only then renamed into the live directory,
        so a failed copy never leaves a half-written release behind.

        Raises:
            DeployVerificationFailed: If the entry file is missing after the copy
            InstallError: If the filesystem operations fail
        """
        entry_file = self.settings.entry_file
        logger.info("Deploying new version", deploy_path=str(deploy_path))

        staging_path = deploy_path.parent / f"{deploy_path.name}.staging.{int(time.time())}"
        try:
            deploy_path.mkdir(parents=True, exist_ok=True)

            remove_path(staging_path)
            shutil.copytree(extracted_path, staging_path, symlinks=True)
            if not (staging_path / entry_file).is_file():
                raise DeployVerificationFailed(f"{entry_file} not found after copy to staging")

            clear_directory(deploy_path)
            for child in staging_path.iterdir():
                os.replace(child, deploy_path / child.name)
            chown_tree(deploy_path, self.settings.deploy_user)
        except DeployVerificationFailed:
            raise
        except (OSError, shutil.Error, KeyError) as e:
            raise InstallError(f"Failed to copy release into {deploy_path}: {e}") from e
        finally:
            remove_path(staging_path)

        if not (deploy_path / entry_file).is_file():
            logger.error("Entry file not found after deployment", entry_file=entry_file)
            raise DeployVerificationFailed(f"{entry_file} not found after deployment")

        logger.info("New version deployed successfully", deploy_path=str(deploy_path))

    def dependency_command(self, deploy_path: Path) -> List[str]:
        """Clean install when a lockfile pins the tree, plain install otherwise."""
        if any((deploy_path / name).is_file() for name in self.settings.lockfiles):
            return list(self.settings.ci_install_command)
        return list(self.settings.install_command)

    def install_dependencies(self, deploy_path: Path) -> None:
        """Reinstall production dependencies from the manifest in deploy_path.

        Raises:
            DependencyInstallFailed: On non-zero exit, timeout, or missing tool
        """
        stale = deploy_path / self.settings.dependency_dir
        if stale.exists():
            logger.debug("Removing stale dependency tree", path=str(stale))
            remove_path(stale)

        install_cmd = self.dependency_command(deploy_path)
        logger.info("Installing production dependencies",
                    deploy_path=str(deploy_path),
                    command=" ".join(install_cmd))

        try:
            result = subprocess.run(
                install_cmd,
                cwd=str(deploy_path),
                capture_output=True,
                text=True,
                timeout=self.settings.install_timeout_seconds,
            )
        except subprocess.TimeoutExpired:
            logger.error("Dependency installation timed out",
                         timeout=self.settings.install_timeout_seconds)
            raise DependencyInstallFailed(
                f"Dependency installation timed out after {self.settings.install_timeout_seconds}s"
            )
        except OSError as e:
            logger.error("Dependency installer could not be executed", command=install_cmd[0], error=str(e))
            raise DependencyInstallFailed(f"Could not run {install_cmd[0]}: {e}") from e

        if result.returncode != 0:
            logger.error("Failed to install dependencies",
                         returncode=result.returncode,
                         stderr=(result.stderr or "")[-2000:],
                         stdout=(result.stdout or "")[-500:])
            raise DependencyInstallFailed(
                f"Dependency installation exited with code {result.returncode}"
            )

        logger.info("Dependencies installed successfully", deploy_path=str(deploy_path))
