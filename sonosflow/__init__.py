"""SONOS group snapshot, restore and notification service.

Command messages arrive over HTTP and are dispatched to the services package,
which talks UPnP/SOAP to the players.
"""

__version__ = "0.1.0"
