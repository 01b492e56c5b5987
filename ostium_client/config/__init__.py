from .settings import Settings, load_settings
from .network import NetworkConfig, VaultSchedule

__all__ = ["Settings", "load_settings", "NetworkConfig", "VaultSchedule"]
