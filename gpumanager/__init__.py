"""GPU topology trees, allocation strategies and manager configuration."""

__version__ = "0.1.0"