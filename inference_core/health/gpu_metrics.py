"""
GPU metrics read from vendor command-line tools.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, List, Dict, Any

from inference_core.llm.streaming import safe_float, safe_int

logger = logging.getLogger(__name__)

NVIDIA_SMI_ARGS = [
    "--query-gpu=utilization.gpu,memory.used,memory.free,memory.total,name",
    "--format=csv,noheader,nounits",
]

ROCM_SMI_ARGS = ["--showuse", "--showmemuse", "--csv"]


@dataclass
class GPUMetrics:
    """Snapshot of the first GPU's utilization and memory."""
    utilization_percent: float = 0.0
    vram_used_mb: int = 0
    vram_free_mb: int = 0
    vram_total_mb: int = 0
    gpu_name: str = "Unknown"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'utilization_percent': self.utilization_percent,
            'vram_used_mb': self.vram_used_mb,
            'vram_free_mb': self.vram_free_mb,
            'vram_total_mb': self.vram_total_mb,
            'gpu_name': self.gpu_name
        }


def parse_nvidia_smi(output: str) -> Optional[GPUMetrics]:
    """Parse ``nvidia-smi`` CSV output. Only the first GPU is reported."""
    lines = [line for line in output.splitlines() if line.strip()]
    if not lines:
        return None
    parts = [part.strip() for part in lines[0].split(",")]
    if len(parts) < 5:
        return None
    return GPUMetrics(
        utilization_percent=safe_float(parts[0]) or 0.0,
        vram_used_mb=safe_int(parts[1]) or 0,
        vram_free_mb=safe_int(parts[2]) or 0,
        vram_total_mb=safe_int(parts[3]) or 0,
        gpu_name=parts[4]
    )


def parse_rocm_smi(output: str) -> Optional[GPUMetrics]:
    """Best-effort parse of ``rocm-smi`` CSV output (header line, then one row per device)."""
    lines = [line for line in output.splitlines() if line.strip()]
    if len(lines) < 2:
        return None
    values = [value.strip() for value in lines[1].split(",")]
    return GPUMetrics(
        utilization_percent=(safe_float(values[1]) or 0.0) if len(values) > 1 else 0.0,
        vram_used_mb=(safe_int(values[2]) or 0) if len(values) > 2 else 0,
        gpu_name="AMD GPU"
    )


class GPUMetricsCollector:
    """Collects GPU metrics via nvidia-smi, falling back to rocm-smi."""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout

    async def _run(self, program: str, args: List[str]) -> Optional[str]:
        try:
            process = await asyncio.create_subprocess_exec(
                program,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            logger.debug(f"{program} not available: {e}")
            return None

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.debug(f"{program} timed out after {self.timeout}s")
            return None

        if process.returncode != 0:
            logger.debug(f"{program} exited with status {process.returncode}")
            return None
        return stdout.decode("utf-8", errors="replace")

    async def collect(self) -> Optional[GPUMetrics]:
        """
        Collect current GPU metrics.

        Returns:
            Metrics of the first GPU, or None when no vendor tool is available
        """
        output = await self._run("nvidia-smi", NVIDIA_SMI_ARGS)
        if output:
            metrics = parse_nvidia_smi(output)
            if metrics is not None:
                return metrics

        output = await self._run("rocm-smi", ROCM_SMI_ARGS)
        if output:
            return parse_rocm_smi(output)
        return None
