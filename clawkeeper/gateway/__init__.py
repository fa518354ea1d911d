from .env import build_env_vars
from .errors import GatewayError
from .health import HealthGate
from .process import GatewaySupervisor
from .r2 import R2Storage
from .restore import restore_on_startup, should_restore
from .service import GatewayService
from .sync import BackupEngine

__all__ = [
    "BackupEngine",
    "GatewayError",
    "GatewayService",
    "GatewaySupervisor",
    "HealthGate",
    "R2Storage",
    "build_env_vars",
    "restore_on_startup",
    "should_restore",
]
