"""
Health monitoring for inference providers and the host GPU.
"""

from .gpu_metrics import GPUMetrics, GPUMetricsCollector
from .health_monitor import LLMHealthMonitor

__all__ = [
    'GPUMetrics',
    'GPUMetricsCollector',
    'LLMHealthMonitor'
]
