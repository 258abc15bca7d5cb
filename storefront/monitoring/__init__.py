from .alerts import Alert, AlertStore
from .channels import NotificationDispatcher
from .config import MonitoringConfig, default_monitoring_config, load_monitoring_config
from .rules import evaluate_rules
from .service import MonitoringService

__all__ = [
    "Alert",
    "AlertStore",
    "MonitoringConfig",
    "MonitoringService",
    "NotificationDispatcher",
    "default_monitoring_config",
    "evaluate_rules",
    "load_monitoring_config",
]
