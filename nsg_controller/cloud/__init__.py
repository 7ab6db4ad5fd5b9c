from .azure_network import NetworkClient, RemoteSecurityGroup, parse_nsg_id

__all__ = ["NetworkClient", "RemoteSecurityGroup", "parse_nsg_id"]
