"""
Registry Gateway

Submits documents to a remote registry API while keeping outgoing requests
within a configured quota per time window.
"""

from .errors import GatewayError, SerializationError, SubmissionFailed
from .gateway import RegistryGateway, build_gateway
from .ratelimit import AdmissionLimiter, InvalidConfiguration, TimeUnit, configure

__all__ = [
    "GatewayError",
    "SerializationError",
    "SubmissionFailed",
    "RegistryGateway",
    "build_gateway",
    "AdmissionLimiter",
    "InvalidConfiguration",
    "TimeUnit",
    "configure",
]
