from .client import RegistryGateway, build_gateway
from .serializer import DocumentSerializer, JsonSerializer
from .submitter import DEFAULT_REGISTRY_URL, DocumentSubmitter, HttpDocumentSubmitter

__all__ = [
    "RegistryGateway",
    "build_gateway",
    "DocumentSerializer",
    "JsonSerializer",
    "DEFAULT_REGISTRY_URL",
    "DocumentSubmitter",
    "HttpDocumentSubmitter",
]
