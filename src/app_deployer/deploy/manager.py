"""Deployment manager: drives one attempt through backup, install, start and health check.

Happy path: fresh -> backed_up -> installed -> process_started -> health_verified.

Any failure before health_verified ends in rollback_unavailable (nothing
changed yet, rollback disabled, or no backup) or goes through rolling_back
to rolled_back / rollback_failed. A single top-level handler makes that call
from the phase the attempt reached.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Optional

import structlog

from app_deployer.core.config import Settings
from app_deployer.core.exceptions import (
    DeployerError,
    HealthCheckTimeout,
    PrerequisiteError,
    RollbackFailed,
    RollbackUnavailable,
)
from app_deployer.core.models import DeploymentAttempt, DeploymentPhase, ManagedProcess
from app_deployer.deploy.artifact import ArtifactStore
from app_deployer.deploy.backup import BackupManager
from app_deployer.deploy.health import HealthChecker
from app_deployer.deploy.installer import ReleaseInstaller
from app_deployer.supervisor import Pm2Supervisor, reload_proxy
from app_deployer.utils.fs import remove_path
from app_deployer.utils.logging import bind_deployment_context

logger = structlog.get_logger()


def check_prerequisites(settings: Settings) -> None:
    """Fail fast when tools the deployment shells out to are missing.

    Raises:
        PrerequisiteError: If a required executable is not on PATH
    """
    logger.info("Validating prerequisites")

    if hasattr(os, "geteuid") and os.geteuid() == 0:
        logger.warning("Running as root. Consider using a non-root user with sudo privileges.")

    missing = [cmd for cmd in settings.required_commands if shutil.which(cmd) is None]
    if missing:
        raise PrerequisiteError(
            f"Required command(s) not found: {', '.join(missing)}. Please install them first."
        )

    logger.info("Prerequisites validation completed")


class DeploymentManager:
    """Runs deployments against a single host, path and process name."""

    def __init__(
        self,
        settings: Settings,
        artifacts: Optional[ArtifactStore] = None,
        backups: Optional[BackupManager] = None,
        installer: Optional[ReleaseInstaller] = None,
        supervisor: Optional[Pm2Supervisor] = None,
        health: Optional[HealthChecker] = None,
    ):
        self.settings = settings
        self.artifacts = artifacts or ArtifactStore(settings)
        self.backups = backups or BackupManager(settings.deploy_user)
        self.installer = installer or ReleaseInstaller(settings)
        self.supervisor = supervisor or Pm2Supervisor(
            pm2_bin=settings.pm2_bin,
            settle_seconds=settings.settle_seconds,
        )
        self.health = health or HealthChecker(timeout_seconds=settings.health_timeout_seconds)

    @property
    def deploy_path(self) -> Path:
        return Path(self.settings.deploy_path)

    def managed_process(self) -> ManagedProcess:
        return ManagedProcess(
            name=self.settings.process_name,
            port=self.settings.port,
            entry_file=self.settings.entry_file,
            cwd=self.deploy_path,
            health_path=self.settings.health_path,
        )

    def deploy(self, source: str, sha256: Optional[str] = None) -> DeploymentAttempt:
        """Run one deployment attempt; never raises for deployment failures.

        Returns:
            The finished attempt; ``attempt.exit_code`` is 0 only on success
        """
        attempt = DeploymentAttempt(
            source=source,
            deploy_path=self.deploy_path,
            process_name=self.settings.process_name,
            port=self.settings.port,
            enable_rollback=self.settings.enable_rollback,
        )
        bind_deployment_context(attempt.attempt_id, attempt.process_name)
        logger.info(
            "Starting deployment process",
            source=source,
            deploy_path=str(attempt.deploy_path),
            process_name=attempt.process_name,
            port=attempt.port,
            rollback_enabled=attempt.enable_rollback,
        )

        try:
            self._run(attempt, source, sha256)
        except DeployerError as e:
            self._handle_failure(attempt, e)
        except Exception as e:
            logger.exception("Unexpected deployment error")
            self._handle_failure(attempt, DeployerError(str(e), code="UNEXPECTED_ERROR"))
        finally:
            self._cleanup(attempt)

        if attempt.succeeded:
            self._sweep_backups()
            logger.info("Deployment completed successfully", phase=attempt.phase.value)
        else:
            logger.error("Deployment failed", phase=attempt.phase.value,
                         error=attempt.error, error_code=attempt.error_code)
        return attempt

    def _run(self, attempt: DeploymentAttempt, source: str, sha256: Optional[str]) -> None:
        check_prerequisites(self.settings)

        attempt.temp_path = self.artifacts.new_temp_dir()
        archive = self.artifacts.locate(source, attempt.temp_path, sha256=sha256)
        if archive.parent == attempt.temp_path:
            attempt.downloaded_artifact = archive
        release = self.artifacts.validate(archive, temp_dir=attempt.temp_path)

        attempt.backup = self.backups.snapshot(self.deploy_path)
        attempt.advance(
            DeploymentPhase.BACKED_UP,
            str(attempt.backup.path) if attempt.backup else "nothing to back up",
        )

        process = self.managed_process()
        self.supervisor.stop(process.name)
        self.installer.install(release.path, self.deploy_path)
        self.installer.install_dependencies(self.deploy_path)
        attempt.advance(DeploymentPhase.INSTALLED, release.sha256)

        self.supervisor.start(process)
        self._log_process_state(process.name)
        attempt.advance(DeploymentPhase.PROCESS_STARTED)

        if self.settings.reload_proxy:
            reload_proxy(self.settings.proxy_reload_command)

        attempt.health = self.health.check(
            port=process.port,
            path=process.health_path,
            max_attempts=self.settings.health_max_attempts,
            interval_seconds=self.settings.health_interval_seconds,
        )
        if not attempt.health.healthy:
            raise HealthCheckTimeout(
                f"Health check failed after {attempt.health.attempts} attempts: {attempt.health.last_error}"
            )

        attempt.advance(DeploymentPhase.HEALTH_VERIFIED)

    def _log_process_state(self, name: str) -> None:
        process = self.supervisor.status(name)
        if process is None:
            logger.warning("Process not listed by pm2 after start", process_name=name)
            return
        logger.info("Process state", process_name=name, state=process.state.value,
                    pid=process.pid, restarts=process.restarts)

    def _sweep_backups(self) -> None:
        """Expire old backups; failures here never undo a verified release."""
        try:
            self.backups.sweep(self.deploy_path, self.settings.backup_retention_days)
        except OSError as e:
            logger.warning("Backup retention sweep failed", deploy_path=str(self.deploy_path), error=str(e))

    def _handle_failure(self, attempt: DeploymentAttempt, error: DeployerError) -> None:
        attempt.error = str(error)
        attempt.error_code = error.code
        logger.error("Deployment step failed", phase=attempt.phase.value, error=str(error), error_code=error.code)

        if attempt.phase == DeploymentPhase.FRESH:
            logger.info("Nothing was changed, aborting without rollback")
            attempt.advance(DeploymentPhase.ROLLBACK_UNAVAILABLE, "failed before any change")
            return

        try:
            self._ensure_rollback_possible(attempt)
        except RollbackUnavailable as e:
            logger.warning("Rollback skipped, manual intervention required", reason=str(e))
            attempt.advance(DeploymentPhase.ROLLBACK_UNAVAILABLE, str(e))
            return

        attempt.advance(DeploymentPhase.ROLLING_BACK)
        try:
            self.rollback(attempt)
        except RollbackFailed as e:
            logger.error("Rollback failed", error=str(e),
                         backup_path=str(attempt.backup.path) if attempt.backup else None)
            attempt.advance(DeploymentPhase.ROLLBACK_FAILED, str(e))
            return

        attempt.advance(DeploymentPhase.ROLLED_BACK)

    def _ensure_rollback_possible(self, attempt: DeploymentAttempt) -> None:
        if not attempt.enable_rollback:
            raise RollbackUnavailable("Rollback not enabled")
        if attempt.backup is None or not attempt.backup.path.is_dir():
            raise RollbackUnavailable("No backup found for rollback")

    def rollback(self, attempt: DeploymentAttempt) -> None:
        """Restore the attempt's backup and restart the previous release.

        Health is not re-checked afterwards; a successful restart is taken
        as a successful rollback.

        Raises:
            RollbackUnavailable: If rollback is disabled or no backup exists
            RollbackFailed: If any rollback action fails
        """
        self._ensure_rollback_possible(attempt)
        backup = attempt.backup
        process = self.managed_process()
        logger.warning("Rolling back to previous version", backup_path=str(backup.path))

        try:
            self.supervisor.stop(process.name)
            self.backups.restore(backup, self.deploy_path)
            self.installer.install_dependencies(self.deploy_path)
            self.supervisor.start(process)
        except DeployerError as e:
            raise RollbackFailed(f"{e.code}: {e}") from e

        self._log_process_state(process.name)
        self.backups.discard(backup)
        logger.info("Rollback completed", backup_path=str(backup.path))

    def _cleanup(self, attempt: DeploymentAttempt) -> None:
        logger.info("Cleaning up temporary files")
        if remove_path(attempt.temp_path):
            logger.debug("Removed temp directory", temp_path=str(attempt.temp_path))
        logger.info("Cleanup completed")
