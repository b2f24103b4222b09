"""Periodic lottery settled by a Chainlink VRF randomness oracle."""

__version__ = "1.0.0"
