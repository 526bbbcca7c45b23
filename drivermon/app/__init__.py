from .config import MonitorConfig, load_config
from .controller import DriverViewController

__all__ = ["MonitorConfig", "load_config", "DriverViewController"]
