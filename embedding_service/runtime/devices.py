"""Device detection for embedding models.

Maps the ``DeviceKind`` label from a model configuration to a concrete torch
device string (``cpu``, ``cuda:0`` or ``mps``).
"""

from dataclasses import dataclass
from typing import List, Optional

import structlog
import torch

from ..encoders.models import DeviceKind

logger = structlog.get_logger("embedding_service.devices")


@dataclass(frozen=True)
class Accelerators:
    """What torch can see on this host."""
    cuda_count: int = 0
    mps: bool = False

    @property
    def gpu_device(self) -> Optional[str]:
        if self.cuda_count:
            return "cuda:0"
        if self.mps:
            return "mps"
        return None

    @property
    def devices(self) -> List[str]:
        found = [f"cuda:{i}" for i in range(self.cuda_count)]
        if self.mps and not self.cuda_count:
            found.append("mps")
        return found + ["cpu"]


class GPUDetector:
    """Detects available accelerators once and caches the result."""

    def __init__(self):
        self._accelerators: Optional[Accelerators] = None

    @property
    def available_devices(self) -> List[str]:
        return self.detect().devices

    def detect(self) -> Accelerators:
        if self._accelerators is not None:
            return self._accelerators

        try:
            if torch.cuda.is_available():
                found = Accelerators(cuda_count=torch.cuda.device_count())
            else:
                mps = getattr(torch.backends, "mps", None)
                found = Accelerators(mps=bool(mps is not None and mps.is_available()))
        except Exception as e:
            logger.error("GPU detection failed", error=str(e))
            found = Accelerators()

        logger.info("GPU detection completed", cuda_count=found.cuda_count, mps=found.mps)
        self._accelerators = found
        return found

    def select_device(self, device_kind: DeviceKind) -> str:
        """Resolve a device label to a torch device string.

        A GPU request on a host without one falls back to CPU with a warning.
        """
        gpu = self.detect().gpu_device

        if device_kind == DeviceKind.CPU:
            device = "cpu"
        elif gpu is None:
            if device_kind == DeviceKind.GPU:
                logger.warning("GPU requested but not available, falling back to CPU")
            device = "cpu"
        else:
            device = gpu

        logger.debug("Device selected", device=device, device_kind=device_kind.value)
        return device


_gpu_detector: Optional[GPUDetector] = None


def get_gpu_detector() -> GPUDetector:
    """Process-wide detector."""
    global _gpu_detector
    if _gpu_detector is None:
        _gpu_detector = GPUDetector()
    return _gpu_detector


def resolve_device(device_kind: DeviceKind) -> str:
    """Resolve a device label using the process-wide detector."""
    return get_gpu_detector().select_device(device_kind)
