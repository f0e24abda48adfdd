"""
Background health polling for registered inference providers.
"""

import asyncio
import threading
from typing import Dict, Optional

from inference_core.llm.interfaces.llm_provider_interface import ProviderHealth, LLMConnectionError
from inference_core.health.gpu_metrics import GPUMetricsCollector
from inference_core.monitoring.structured_logger import get_logger

logger = get_logger(__name__, component="health_monitor")


class LLMHealthMonitor:
    """
    Periodically probes every provider and keeps the latest snapshot.

    GPU metrics, when a vendor tool is available, are merged into each
    provider's status since local backends share the host GPU.
    """

    def __init__(
        self,
        manager,
        gpu_collector: Optional[GPUMetricsCollector] = None,
        interval: float = 30.0
    ):
        """
        Initialize the monitor.

        Args:
            manager: LLMClientManager whose providers are polled
            gpu_collector: Source of GPU metrics
            interval: Seconds between polls
        """
        self.manager = manager
        self.gpu_collector = gpu_collector or GPUMetricsCollector()
        self.interval = interval

        self._latest_status: Dict[str, ProviderHealth] = {}
        self._status_lock = threading.Lock()
        self._running = False
        self._monitoring_task: Optional[asyncio.Task] = None

    async def poll(self) -> Dict[str, ProviderHealth]:
        """
        Run one health poll and store the result.

        Returns:
            Health per provider id
        """
        statuses = await self.manager.check_all_health()
        gpu_metrics = await self.gpu_collector.collect()

        enriched = {}
        for provider_id, health in statuses.items():
            if gpu_metrics is not None:
                health = health.with_gpu_metrics(gpu_metrics.utilization_percent, gpu_metrics.vram_free_mb)
            enriched[provider_id] = health

        with self._status_lock:
            self._latest_status = enriched

        healthy = sum(1 for health in enriched.values() if health.is_healthy)
        logger.debug("Health poll complete", healthy=healthy, total=len(enriched))
        return dict(enriched)

    def get_latest_status(self) -> Dict[str, ProviderHealth]:
        """Copy of the most recent poll result, keyed by provider id."""
        with self._status_lock:
            return dict(self._latest_status)

    async def require_healthy_provider(self) -> str:
        """
        Guard for expensive work: ensure at least one provider can serve.

        Polls first when no snapshot has been taken yet.

        Returns:
            Id of a healthy provider, the primary when it is healthy

        Raises:
            LLMConnectionError: If no provider is reachable with its model loaded
        """
        status = self.get_latest_status()
        if not status:
            status = await self.poll()

        primary_id = self.manager.primary_id
        if primary_id and primary_id in status and status[primary_id].is_healthy:
            return primary_id
        for provider_id, health in status.items():
            if health.is_healthy:
                return provider_id

        logger.warning("No healthy LLM provider available", providers=sorted(status))
        raise LLMConnectionError(
            "No healthy LLM provider is available. Checked: "
            + (", ".join(status) if status else "none")
        )

    def start(self):
        """Start continuous polling on the running event loop."""
        if self._running:
            return

        self._running = True
        self._monitoring_task = asyncio.create_task(self._monitoring_loop())
        logger.info("LLM health monitor started", interval=self.interval)

    async def stop(self):
        """Stop continuous polling."""
        self._running = False

        if self._monitoring_task:
            self._monitoring_task.cancel()
            try:
                await self._monitoring_task
            except asyncio.CancelledError:
                pass
            self._monitoring_task = None
        logger.info("LLM health monitor stopped")

    async def _monitoring_loop(self):
        while self._running:
            try:
                await self.poll()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error during health poll", error=e)
            await asyncio.sleep(self.interval)
