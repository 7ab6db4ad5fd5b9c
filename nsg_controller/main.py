#!/usr/bin/env python3
"""
Host-Network NSG Controller - Main Entry Point

Starts:
- Kubernetes pod watcher
- Event coalescer and NSG reconciliation engine
- HTTP API for health, readiness, status and metrics
"""

import logging
import signal
import sys
import threading
from typing import List, Optional

import uvicorn

from .api.rest_api_server import app, set_controller
from .cloud import NetworkClient
from .cluster import PodWatcher, load_kubernetes_config
from .config import AzureConfig, ControllerConfig, load_azure_config, parse_args
from .controller import HostNetworkNsgController
from .exceptions import ConfigurationError, NsgControllerError
from .firewall import RuleSettings
from .logging_config import setup_logging
from .reconciler import ReconciliationEngine

logger = logging.getLogger(__name__)


def build_controller(config: ControllerConfig, azure_config: AzureConfig) -> HostNetworkNsgController:
    """Create the Kubernetes and Azure clients and wire up the controller."""
    load_kubernetes_config(config.kubeconfig)
    watcher = PodWatcher()
    network = NetworkClient(azure_config)
    reconciler = ReconciliationEngine(watcher, network, RuleSettings.from_config(config))
    return HostNetworkNsgController(
        watcher,
        reconciler,
        cooldown=config.cooldown_seconds,
        label_key=config.target_label,
    )


def start_rest_api(port: int):
    """Serve the HTTP API until uvicorn receives SIGINT/SIGTERM."""
    logger.info(f"Starting HTTP API on port {port}...")
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="warning")


def wait_for_shutdown():
    stop = threading.Event()

    def _handle(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        stop.set()

    signal.signal(signal.SIGTERM, _handle)
    signal.signal(signal.SIGINT, _handle)
    stop.wait()


def main(argv: Optional[List[str]] = None) -> int:
    try:
        config = parse_args(argv)
    except ConfigurationError as e:
        setup_logging()
        logger.error(f"Invalid configuration: {e}")
        return 1

    setup_logging(config.log_level, config.log_file or None)

    logger.info("=" * 60)
    logger.info("  Host-Network NSG Controller")
    logger.info("=" * 60)

    try:
        azure_config = load_azure_config(config.azure_config_path)
        controller = build_controller(config, azure_config)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    logger.info(
        f"Managing NSG of subnet {azure_config.vnet_name}/{azure_config.subnet_name} "
        f"for pods labelled {config.target_label}=true (rule prefix {config.rule_prefix!r})"
    )

    try:
        controller.run()
    except NsgControllerError as e:
        logger.error(f"Controller failed to start: {e}")
        return 1

    set_controller(controller)
    try:
        if config.http_port:
            start_rest_api(config.http_port)
        else:
            wait_for_shutdown()
    finally:
        controller.stop()

    return 0


if __name__ == "__main__":
    sys.exit(main())
