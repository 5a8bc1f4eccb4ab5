"""lightgate: vendor-neutral Lightning Network payment client."""

__version__ = "0.1.0"
