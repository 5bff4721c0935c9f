"""Allow ``python -m app_deployer``."""

from app_deployer.main import run

if __name__ == "__main__":
    run()
