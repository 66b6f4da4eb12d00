from netsim.hub.hub import Hub

__all__ = ["Hub"]
