"""Fixed-product market maker for multi-outcome prediction markets."""

__version__ = "0.1.0"
