"""Command-line options of the manager and their conversion to a Config."""

from __future__ import annotations

import argparse
import logging
import queue
import sys
from dataclasses import dataclass, fields
from datetime import timedelta
from typing import Sequence

from .config import Config

log = logging.getLogger(__name__)

DEFAULT_DRIVER = "nvidia"
DEFAULT_QUERY_PORT = 5678
DEFAULT_SAMPLE_PERIOD = 1
DEFAULT_DOCKER_HOST = "unix:////var/run/docker.sock"
DEFAULT_VIRTUAL_MANAGER_PATH = "/etc/gpu-manager/vm"
DEFAULT_ALLOCATION_CHECK_PERIOD = 30
DEFAULT_CHECKPOINT_PATH = "/etc/gpu-manager"
DEFAULT_DEVICE_PLUGIN_PATH = "/var/lib/kubelet/device-plugins/"
VCUDA_QUEUE_SIZE = 10

_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}


def _parse_bool(text: str) -> bool:
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean value {text!r}")


@dataclass
class Options:
    """Settings the manager accepts on its command line."""

    driver: str = DEFAULT_DRIVER
    extra_path: str = ""
    docker_endpoint: str = DEFAULT_DOCKER_HOST
    volume_config_path: str = ""
    query_port: int = DEFAULT_QUERY_PORT
    query_addr: str = "localhost"
    kube_config_file: str = ""
    standalone: bool = False
    sample_period: int = DEFAULT_SAMPLE_PERIOD
    node_labels: str = ""
    hostname_override: str = ""
    virtual_manager_path: str = DEFAULT_VIRTUAL_MANAGER_PATH
    device_plugin_path: str = ""
    enable_share: bool = False
    allocation_check_period: int = DEFAULT_ALLOCATION_CHECK_PERIOD
    in_cluster_mode: bool = False
    checkpoint_path: str = DEFAULT_CHECKPOINT_PATH

    def add_arguments(self, parser: argparse.ArgumentParser) -> None:
        """Register every option on ``parser``, defaulting to this instance's values."""

        def text(flag: str, dest: str, help_text: str) -> None:
            parser.add_argument(flag, dest=dest, default=getattr(self, dest), help=help_text)

        def integer(flag: str, dest: str, help_text: str) -> None:
            parser.add_argument(
                flag, dest=dest, type=int, default=getattr(self, dest), help=help_text
            )

        def boolean(flag: str, dest: str, help_text: str) -> None:
            parser.add_argument(
                flag,
                dest=dest,
                type=_parse_bool,
                nargs="?",
                const=True,
                default=getattr(self, dest),
                help=help_text,
            )

        text("--driver", "driver", "The driver name for manager")
        text("--extra-config", "extra_path", "The extra config file location")
        text("--volume-config", "volume_config_path", "The volume config file location")
        text(
            "--docker-endpoint",
            "docker_endpoint",
            "Use this for the docker endpoint to communicate with",
        )
        integer("--query-port", "query_port", "port for query statistics information")
        text("--query-addr", "query_addr", "address for query statistics information")
        text(
            "--kubeconfig",
            "kube_config_file",
            "Path to kubeconfig file with authorization information",
        )
        boolean("--standalone", "standalone", "Standalone mode (with no kubernetes API server)")
        integer("--sample-period", "sample_period", "Sample period for each card, unit second")
        text(
            "--node-labels",
            "node_labels",
            "automated label for this node, if empty, node will be only labeled by gpu model",
        )
        text(
            "--hostname-override",
            "hostname_override",
            "If non-empty, will use this string as identification instead of the actual hostname.",
        )
        text(
            "--virtual-manager-path",
            "virtual_manager_path",
            "configuration path for virtual manager store files",
        )
        text(
            "--device-plugin-path",
            "device_plugin_path",
            "the path for kubelet receive device plugin registration",
        )
        text(
            "--checkpoint-path",
            "checkpoint_path",
            "configuration path for checkpoint store file",
        )
        boolean("--share-mode", "enable_share", "enable share mode allocation")
        integer(
            "--allocation-check-period",
            "allocation_check_period",
            "allocation check period, unit second",
        )
        boolean(
            "--incluster-mode",
            "in_cluster_mode",
            "Tell manager kubeconfig is built from in cluster token",
        )


def normalize_flag_name(name: str) -> str:
    """Turn ``_`` separators in a flag name into ``-``."""
    return name.replace("_", "-")


def _normalize_argv(argv: Sequence[str]) -> list[str]:
    normalized: list[str] = []
    args = iter(argv)
    for arg in args:
        if arg == "--":
            normalized.append(arg)
            normalized.extend(args)
            break
        if arg.startswith("--"):
            name, sep, value = arg.partition("=")
            arg = normalize_flag_name(name) + sep + value
        normalized.append(arg)
    return normalized


def parse_options(argv: Sequence[str] | None = None) -> Options:
    """Parse command-line arguments into an :class:`Options`."""
    if argv is None:
        argv = sys.argv[1:]
    defaults = Options()
    parser = argparse.ArgumentParser(prog="gpu-manager")
    defaults.add_arguments(parser)
    namespace = parser.parse_args(_normalize_argv(argv))
    return Options(**{f.name: getattr(namespace, f.name) for f in fields(Options)})


def parse_node_labels(text: str) -> dict[str, str]:
    """Parse ``key=value`` pairs separated by commas; malformed items are skipped."""
    labels: dict[str, str] = {}
    for item in text.split(","):
        if not item:
            continue
        key, sep, value = item.partition("=")
        if sep:
            labels[key] = value
        else:
            log.warning("malformed node labels: %s", [item])
    return labels


def build_config(options: Options) -> Config:
    """Build the runtime :class:`Config` from parsed options."""
    cfg = Config(
        driver=options.driver,
        query_port=options.query_port,
        query_addr=options.query_addr,
        kube_config=options.kube_config_file,
        standalone=options.standalone,
        sample_period=timedelta(seconds=options.sample_period),
        docker_endpoint=options.docker_endpoint,
        vcuda_requests_queue=queue.Queue(maxsize=VCUDA_QUEUE_SIZE),
        device_plugin_path=DEFAULT_DEVICE_PLUGIN_PATH,
        virtual_manager_path=options.virtual_manager_path,
        volume_config_path=options.volume_config_path,
        enable_share=options.enable_share,
        allocation_check_period=timedelta(seconds=options.allocation_check_period),
        in_cluster_mode=options.in_cluster_mode,
        checkpoint_path=options.checkpoint_path,
    )
    if options.hostname_override:
        cfg.hostname = options.hostname_override
    if options.extra_path:
        cfg.extra_config_path = options.extra_path
    if options.device_plugin_path:
        cfg.device_plugin_path = options.device_plugin_path
    cfg.node_labels = parse_node_labels(options.node_labels)
    return cfg