"""Anonymous one-to-one call pairing.

This package provides the coordinator that pairs waiting participants and
relays their handshake messages, plus the participant-side connection
lifecycle that drives a media engine through negotiation and recovery.
"""

__version__ = "0.1.0"
