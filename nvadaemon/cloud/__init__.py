"""
nvadaemon Cloud Module

Cloud networking capability and its Azure and in-memory implementations.
"""

from .interfaces import CloudNetwork, NetworkInterface, PublicIpAddress, Route, RouteTable
from .memory import InMemoryCloudNetwork

__all__ = [
    "CloudNetwork",
    "InMemoryCloudNetwork",
    "NetworkInterface",
    "PublicIpAddress",
    "Route",
    "RouteTable",
]
