"""Runtime configuration shared by the manager's components."""

from __future__ import annotations

import queue
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Mapping


@dataclass
class Config:
    """Options the manager and its device trees run with."""

    driver: str = ""
    extra_config_path: str = ""
    docker_endpoint: str = ""
    query_port: int = 0
    query_addr: str = ""
    kube_config: str = ""
    standalone: bool = False
    sample_period: timedelta = timedelta(0)
    hostname: str = ""
    node_labels: dict[str, str] = field(default_factory=dict)
    virtual_manager_path: str = ""
    device_plugin_path: str = ""
    volume_config_path: str = ""
    enable_share: bool = False
    allocation_check_period: timedelta = timedelta(0)
    in_cluster_mode: bool = False
    checkpoint_path: str = ""
    vcuda_requests_queue: queue.Queue | None = None


@dataclass
class ExtraConfig:
    """Extra options kept apart from :class:`Config`."""

    devices: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExtraConfig":
        """Build an ExtraConfig from decoded JSON; ``devices`` may be absent."""
        if not isinstance(data, Mapping):
            raise TypeError(f"extra config must be an object, got {type(data).__name__}")
        devices = data.get("devices")
        if devices is None:
            return cls()
        if not isinstance(devices, list):
            raise TypeError(f"devices must be a list, got {type(devices).__name__}")
        for device in devices:
            if not isinstance(device, str):
                raise TypeError(f"device entries must be strings, got {device!r}")
        return cls(devices=list(devices))