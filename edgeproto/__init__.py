"""DHCP packet codec, client and server, and a captive-portal DNS responder, over bytes or asyncio UDP."""

__version__ = "0.1.0"