"""Main entry point for app-deployer."""

from __future__ import annotations

import argparse
import signal
import sys
from typing import List, Optional

import structlog

from app_deployer import __version__
from app_deployer.core.config import load_settings
from app_deployer.core.exceptions import ConfigurationError
from app_deployer.core.models import DeploymentAttempt
from app_deployer.deploy.manager import DeploymentManager
from app_deployer.utils.logging import setup_logging

logger = structlog.get_logger()

EPILOG = """\
examples:
  # Basic deployment
  app-deployer --zip-file /tmp/backend-deployment.zip

  # Deployment with custom options
  app-deployer --zip-file /tmp/backend-deployment.zip --path /var/www/app --name my-app --port 3000

  # Deployment with rollback enabled
  app-deployer --zip-file /tmp/backend-deployment.zip --rollback
"""


class DeployArgumentParser(argparse.ArgumentParser):
    """Argument parser whose usage errors exit with status 1."""

    def error(self, message: str):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = DeployArgumentParser(
        prog="app-deployer",
        description="Deploy a release archive under pm2 with backup-based rollback",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-z", "--zip-file", required=True,
                        help="Path or URL (https://, s3://) of the deployment ZIP artifact")
    parser.add_argument("-p", "--path", dest="deploy_path", default=None,
                        help="Deployment path (default: /var/www/app)")
    parser.add_argument("-n", "--name", dest="process_name", default=None,
                        help="pm2 process name (default: node-app)")
    parser.add_argument("-o", "--port", type=int, default=None,
                        help="Application port (default: 4000)")
    parser.add_argument("-r", "--rollback", dest="enable_rollback", action="store_const", const=True,
                        default=None, help="Enable rollback on failure")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")
    parser.add_argument("--entry-file", default=None, help="Entry file (default: server.js)")
    parser.add_argument("--manifest-file", default=None, help="Dependency manifest (default: package.json)")
    parser.add_argument("--health-path", default=None, help="Health endpoint path (default: /api/health)")
    parser.add_argument("--health-attempts", dest="health_max_attempts", type=int, default=None,
                        help="Health check attempts (default: 30)")
    parser.add_argument("--health-interval", dest="health_interval_seconds", type=float, default=None,
                        help="Seconds between health check attempts (default: 2)")
    parser.add_argument("--retention-days", dest="backup_retention_days", type=int, default=None,
                        help="Remove backups older than this many days (default: 7)")
    parser.add_argument("--sha256", default=None, help="Expected SHA256 of the artifact")
    parser.add_argument("--reload-proxy", dest="reload_proxy", action="store_const", const=True,
                        default=None, help="Reload the reverse proxy after starting the service")
    parser.add_argument("--log-format", choices=["console", "json"], default=None,
                        help="Log output format (default: console)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def log_summary(attempt: DeploymentAttempt, health_url: str) -> None:
    name = attempt.process_name
    logger.info(
        "Deployment summary",
        deploy_path=str(attempt.deploy_path),
        process_name=name,
        port=attempt.port,
        health_check=health_url,
        backup=str(attempt.backup.path) if attempt.backup else None,
    )
    logger.info(
        "Useful commands",
        status="pm2 status",
        logs=f"pm2 logs {name}",
        restart=f"pm2 restart {name}",
        stop=f"pm2 stop {name}",
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Parse arguments, run one deployment, and return the process exit code."""
    args = build_parser().parse_args(argv)

    overrides = {
        key: getattr(args, key)
        for key in (
            "deploy_path",
            "process_name",
            "port",
            "enable_rollback",
            "entry_file",
            "manifest_file",
            "health_path",
            "health_max_attempts",
            "health_interval_seconds",
            "backup_retention_days",
            "reload_proxy",
            "log_format",
        )
    }
    if args.verbose:
        overrides["log_level"] = "DEBUG"

    try:
        settings = load_settings(**overrides)
    except ConfigurationError as e:
        setup_logging("INFO", args.log_format or "console")
        logger.error("Configuration validation failed", error=str(e), error_code=e.code)
        return 1

    setup_logging(settings.log_level, settings.log_format)

    manager = DeploymentManager(settings)
    attempt = manager.deploy(args.zip_file, sha256=args.sha256)

    if attempt.succeeded:
        log_summary(attempt, settings.health_url)
    return attempt.exit_code


def run():
    """Console script entry point."""

    def handle_sigterm(signum, frame):
        logger.warning("Received SIGTERM, aborting deployment")
        sys.exit(1)

    signal.signal(signal.SIGTERM, handle_sigterm)
    sys.exit(main())


if __name__ == "__main__":
    run()
