"""
Command-line client for the lab47 account service and the vcr.pub registry.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
