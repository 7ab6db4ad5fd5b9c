"""
Host-Network NSG Controller

Keeps the inbound rules of an Azure network security group in step with the
host-network pods running in a Kubernetes cluster.
"""

__version__ = "0.1.0"
