"""
nvadaemon

Keeps a floating public IP and/or a route next hop pointed at a healthy
member of an ordered pool of network virtual appliances.
"""

__version__ = "0.1.0"
