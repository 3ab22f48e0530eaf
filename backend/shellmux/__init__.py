"""shellmux: multiplexed interactive SSH sessions behind a WebSocket bridge."""

__version__ = "0.1.0"
