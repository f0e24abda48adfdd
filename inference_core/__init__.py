"""
Inference Core: provider adapters, failover and routing for local coding models.
"""

__version__ = "0.1.0"
