from pathlib import Path
from unittest.mock import patch

import pytest

from app_deployer.core.models import DeploymentAttempt, DeploymentPhase
from app_deployer.main import build_parser, main


def finished_attempt(phase: DeploymentPhase) -> DeploymentAttempt:
    attempt = DeploymentAttempt(source="r.zip", deploy_path=Path("/var/www/app"), process_name="node-app", port=4000)
    attempt.advance(DeploymentPhase.BACKED_UP)
    attempt.advance(phase)
    return attempt


def test_help_exits_zero(capsys):
    with pytest.raises(SystemExit) as exc_info:
        main(["--help"])
    assert exc_info.value.code == 0
    assert "--zip-file" in capsys.readouterr().out


def test_missing_zip_file_exits_one():
    with pytest.raises(SystemExit) as exc_info:
        main([])
    assert exc_info.value.code == 1


def test_unknown_option_exits_one():
    with pytest.raises(SystemExit) as exc_info:
        main(["--zip-file", "r.zip", "--bogus"])
    assert exc_info.value.code == 1


def test_defaults_leave_settings_untouched():
    args = build_parser().parse_args(["-z", "r.zip"])
    assert args.deploy_path is None
    assert args.enable_rollback is None
    assert args.verbose is False


def test_flags_are_passed_to_settings():
    with patch("app_deployer.main.DeploymentManager") as Manager:
        Manager.return_value.deploy.return_value = finished_attempt(DeploymentPhase.ROLLBACK_UNAVAILABLE)
        code = main([
            "-z", "/tmp/r.zip",
            "-p", "/srv/api",
            "-n", "api-app",
            "-o", "5000",
            "-r",
            "-v",
            "--health-attempts", "5",
            "--entry-file", "index.js",
        ])

    assert code == 1
    settings = Manager.call_args.args[0]
    assert settings.deploy_path == "/srv/api"
    assert settings.process_name == "api-app"
    assert settings.port == 5000
    assert settings.enable_rollback is True
    assert settings.log_level == "DEBUG"
    assert settings.health_max_attempts == 5
    assert settings.entry_file == "index.js"
    Manager.return_value.deploy.assert_called_once_with("/tmp/r.zip", sha256=None)


def test_success_exits_zero():
    with patch("app_deployer.main.DeploymentManager") as Manager:
        Manager.return_value.deploy.return_value = finished_attempt(DeploymentPhase.HEALTH_VERIFIED)
        assert main(["-z", "/tmp/r.zip"]) == 0


def test_invalid_port_exits_one():
    with patch("app_deployer.main.DeploymentManager") as Manager:
        assert main(["-z", "/tmp/r.zip", "--port", "70000"]) == 1
    Manager.assert_not_called()


def test_environment_provides_defaults(monkeypatch):
    monkeypatch.setenv("APP_DEPLOYER_PROCESS_NAME", "from-env")
    with patch("app_deployer.main.DeploymentManager") as Manager:
        Manager.return_value.deploy.return_value = finished_attempt(DeploymentPhase.HEALTH_VERIFIED)
        main(["-z", "/tmp/r.zip"])
    assert Manager.call_args.args[0].process_name == "from-env"
