from netsim.runtime.config import HubConfig, MonitoringEndpoint, load_hub_config
from netsim.runtime.orchestrator import DeploymentReport, Orchestrator
from netsim.runtime.registry import ApplicationRegistry, DeviceRegistry

__all__ = [
    "ApplicationRegistry",
    "DeploymentReport",
    "DeviceRegistry",
    "HubConfig",
    "MonitoringEndpoint",
    "Orchestrator",
    "load_hub_config",
]
