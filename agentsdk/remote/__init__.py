"""Remote delegation: HTTP client and server for agents in other processes."""

from .client import RemoteAgentClient
from .models import MetadataResponse, CapabilitiesResponse, PlanResponse
from .server import AgentServer, create_app

__all__ = [
    "RemoteAgentClient",
    "AgentServer",
    "create_app",
    "MetadataResponse",
    "CapabilitiesResponse",
    "PlanResponse",
]
