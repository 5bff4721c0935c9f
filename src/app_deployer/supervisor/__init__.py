"""Process supervisor adapter for the managed service."""

from .models import Pm2Process, ProcessState
from .pm2 import Pm2Supervisor, reload_proxy

__all__ = ["Pm2Supervisor", "Pm2Process", "ProcessState", "reload_proxy"]
