"""mcgke - Mission Control on GKE installer."""

__version__ = "0.1.0"
