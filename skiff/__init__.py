"""
Skiff: asynchronous static-site deployments with live log streaming.
"""

__version__ = "0.3.0"
