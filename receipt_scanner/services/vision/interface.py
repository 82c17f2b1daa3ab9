"""
Vision Model Adapter Interface

DESIGN DECISION: The router talks to vision models through this one method.
An adapter makes exactly one attempt with one timeout. Escalation to other
models is the router's job, so adapters never retry.
"""

from abc import ABC, abstractmethod

from receipt_scanner.models.receipt import VisionRequest, VisionResponse


class VisionModelAdapter(ABC):
    """Uniform contract for invoking one hosted multimodal model."""

    @abstractmethod
    async def invoke(self, request: VisionRequest) -> VisionResponse:
        """
        Send one image + prompt to one model.

        Returns:
            The normalized response. Empty text is a valid response.

        Raises:
            ModelInvocationError: On timeout, transport failure or non-2xx status
        """
        pass

    async def close(self) -> None:
        """Release network resources, if any."""
        return None
