"""
Controller configuration.

Process settings come from command-line flags, each defaulting to an
environment variable. Azure settings are read from the cloud provider's
azure.json file, the same file the Kubernetes cloud provider uses.
"""

import argparse
import json
import os
from dataclasses import dataclass
from typing import List, Optional

from .exceptions import ConfigurationError
from .models import RuleProtocol

DEFAULT_AZURE_CONFIG_PATH = "/etc/kubernetes/azure.json"
DEFAULT_RULE_PREFIX = "hostNetwork"
DEFAULT_TARGET_LABEL = "updateNSG"
DEFAULT_COOLDOWN_SECONDS = 10.0
DEFAULT_BASE_PRIORITY = 2000
DEFAULT_PRIORITY_STEP = 10
DEFAULT_HTTP_PORT = 8080

# Azure accepts NSG rule priorities in this range
MIN_RULE_PRIORITY = 100
MAX_RULE_PRIORITY = 4096

ALLOWED_PROTOCOLS = (RuleProtocol.TCP, RuleProtocol.UDP, RuleProtocol.ANY)


@dataclass(frozen=True)
class AzureConfig:
    """Subset of azure.json needed to find and update the subnet's NSG."""

    subscription_id: str
    resource_group: str
    vnet_name: str
    subnet_name: str
    vnet_resource_group: str = ""
    user_assigned_identity_id: str = ""

    @property
    def subnet_resource_group(self) -> str:
        return self.vnet_resource_group or self.resource_group


@dataclass(frozen=True)
class ControllerConfig:
    kubeconfig: str = ""
    azure_config_path: str = DEFAULT_AZURE_CONFIG_PATH
    rule_prefix: str = DEFAULT_RULE_PREFIX
    target_label: str = DEFAULT_TARGET_LABEL
    cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS
    base_priority: int = DEFAULT_BASE_PRIORITY
    priority_step: int = DEFAULT_PRIORITY_STEP
    protocol: RuleProtocol = RuleProtocol.TCP
    http_port: int = DEFAULT_HTTP_PORT
    log_level: str = "INFO"
    log_file: str = ""

    def validate(self):
        """Raise ConfigurationError if any setting is out of range."""
        errors = []
        if not self.rule_prefix:
            errors.append("rule prefix must not be empty")
        if not self.target_label:
            errors.append("target label must not be empty")
        if self.cooldown_seconds <= 0:
            errors.append(f"cooldown must be positive, got {self.cooldown_seconds}")
        if self.priority_step <= 0:
            errors.append(f"priority step must be positive, got {self.priority_step}")
        if not MIN_RULE_PRIORITY <= self.base_priority <= MAX_RULE_PRIORITY:
            errors.append(
                f"base priority must be within {MIN_RULE_PRIORITY}-{MAX_RULE_PRIORITY}, "
                f"got {self.base_priority}"
            )
        if self.protocol not in ALLOWED_PROTOCOLS:
            errors.append(f"unsupported rule protocol: {self.protocol.value}")
        if not 0 <= self.http_port <= 65535:
            errors.append(f"invalid HTTP port: {self.http_port}")
        if errors:
            raise ConfigurationError("; ".join(errors))


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def _protocol(value: str) -> RuleProtocol:
    for protocol in ALLOWED_PROTOCOLS:
        if protocol.value.lower() == value.lower():
            return protocol
    raise argparse.ArgumentTypeError(
        f"invalid protocol {value!r} (choose from {', '.join(p.value for p in ALLOWED_PROTOCOLS)})"
    )


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nsg-controller",
        description="Open Azure NSG inbound rules for Kubernetes host-network pods.",
    )
    parser.add_argument(
        "--kubeconfig",
        default=os.getenv("KUBECONFIG", ""),
        help="absolute path to the kubeconfig file (in-cluster config when empty)",
    )
    parser.add_argument(
        "--azureconfig",
        dest="azure_config_path",
        default=os.getenv("AZURE_CONFIG_PATH", DEFAULT_AZURE_CONFIG_PATH),
        help="absolute path to the azure.json file",
    )
    parser.add_argument(
        "--rule-prefix",
        default=os.getenv("NSG_RULE_PREFIX", DEFAULT_RULE_PREFIX),
        help="name prefix reserved for controller-owned rules",
    )
    parser.add_argument(
        "--target-label",
        default=os.getenv("TARGET_POD_LABEL", DEFAULT_TARGET_LABEL),
        help='pod label that must be set to "true" to opt in',
    )
    parser.add_argument(
        "--cooldown",
        dest="cooldown_seconds",
        type=float,
        default=_env_number("NSG_UPDATE_COOLDOWN", DEFAULT_COOLDOWN_SECONDS, float),
        help="minimum seconds between two NSG updates",
    )
    parser.add_argument(
        "--base-priority",
        type=int,
        default=_env_number("NSG_BASE_PRIORITY", DEFAULT_BASE_PRIORITY, int),
        help="priority of the first controller-owned rule",
    )
    parser.add_argument(
        "--priority-step",
        type=int,
        default=_env_number("NSG_PRIORITY_STEP", DEFAULT_PRIORITY_STEP, int),
        help="priority increment between controller-owned rules",
    )
    parser.add_argument(
        "--protocol",
        type=_protocol,
        default=_protocol(os.getenv("NSG_RULE_PROTOCOL", RuleProtocol.TCP.value)),
        help="protocol of the generated rules (Tcp, Udp or *)",
    )
    parser.add_argument(
        "--port",
        dest="http_port",
        type=int,
        default=_env_number("HTTP_PORT", DEFAULT_HTTP_PORT, int),
        help="port for the health and metrics endpoints, 0 to disable",
    )
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "INFO"))
    parser.add_argument("--log-file", default=os.getenv("LOG_FILE", ""))
    return parser


def parse_args(argv: Optional[List[str]] = None) -> ControllerConfig:
    """Parse command-line flags into a validated ControllerConfig."""
    try:
        parser = build_arg_parser()
    except argparse.ArgumentTypeError as e:
        raise ConfigurationError(str(e))
    args = parser.parse_args(argv)

    config = ControllerConfig(
        kubeconfig=args.kubeconfig,
        azure_config_path=args.azure_config_path,
        rule_prefix=args.rule_prefix,
        target_label=args.target_label,
        cooldown_seconds=args.cooldown_seconds,
        base_priority=args.base_priority,
        priority_step=args.priority_step,
        protocol=args.protocol,
        http_port=args.http_port,
        log_level=args.log_level,
        log_file=args.log_file,
    )
    config.validate()
    return config


AZURE_REQUIRED_KEYS = {
    "subscriptionId": "subscription_id",
    "resourceGroup": "resource_group",
    "vnetName": "vnet_name",
    "subnetName": "subnet_name",
}


def load_azure_config(path: str) -> AzureConfig:
    """Read azure.json, raising ConfigurationError if it is unusable."""
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigurationError(f"cannot read Azure config {path}: {e}")
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Azure config {path} is not valid JSON: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"Azure config {path} must contain a JSON object")

    missing = [key for key in AZURE_REQUIRED_KEYS if not data.get(key)]
    if missing:
        raise ConfigurationError(
            f"Azure config {path} is missing required keys: {', '.join(missing)}"
        )

    return AzureConfig(
        subscription_id=data["subscriptionId"],
        resource_group=data["resourceGroup"],
        vnet_name=data["vnetName"],
        subnet_name=data["subnetName"],
        vnet_resource_group=data.get("vnetResourceGroup") or "",
        user_assigned_identity_id=data.get("userAssignedIdentityID") or "",
    )
