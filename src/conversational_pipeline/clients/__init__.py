"""HTTP clients for external services."""

from .models import HealthResponse, RefineRequest, RefineResponse
from .protocol import RefinementClientProtocol, Refiner
from .refinement_client import RefinementClient

__all__ = [
    "HealthResponse",
    "RefineRequest",
    "RefineResponse",
    "RefinementClient",
    "RefinementClientProtocol",
    "Refiner",
]
