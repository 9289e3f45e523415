"""Server directory: known endpoints, selection and reachability probes."""

from .models import ProbeResult, ServerEndpoint, default_endpoints
from .probe import probe_endpoint
from .service import InMemoryServerDirectory, ProbeFn, ServerDirectory, YamlServerDirectory

__all__ = [
    "InMemoryServerDirectory",
    "ProbeFn",
    "ProbeResult",
    "ServerDirectory",
    "ServerEndpoint",
    "YamlServerDirectory",
    "default_endpoints",
    "probe_endpoint",
]
