"""xregistry-bridge — one xRegistry facade over many package registries."""

__version__ = "0.1.0"
