from .config import RestConfig
from .controllers import RelationController, ResourceController, ResourceRegistry, ResourceRequest
from .orm import InMemoryQueryBuilder, ModelDescriptor, RelationDescriptor, RelationKind, SQLQueryBuilder

__all__ = [
    "RestConfig",
    "ResourceRegistry",
    "ResourceController",
    "RelationController",
    "ResourceRequest",
    "ModelDescriptor",
    "RelationDescriptor",
    "RelationKind",
    "SQLQueryBuilder",
    "InMemoryQueryBuilder",
]
