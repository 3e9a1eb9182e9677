from graph_orm.config import Config
from graph_orm.entity import Entity, Identity, ValueObject, status_of
from graph_orm.exceptions import (
    DanglingReference,
    EntityNotManaged,
    FlushFailed,
    GraphOrmError,
    IdentityConflict,
    NotFound,
    ProjectionError,
    ReentrantLoad,
    SchemaInconsistency,
    StaleReferenceAccess,
)
from graph_orm.lazy import LoadState
from graph_orm.relationship_graph import RelationshipGraph, build_graph
from graph_orm.relationships import ALL, Cascade, Fetch, Ownership, ToMany, ToOne
from graph_orm.repository import ReadOnlyRepository, Repository
from graph_orm.session import Session, SessionFactory
from graph_orm.state import Status, identity_of
from graph_orm.storages import IdGeneration, Storage, StorageError

__all__ = [
    "ALL",
    "Cascade",
    "Config",
    "DanglingReference",
    "Entity",
    "EntityNotManaged",
    "Fetch",
    "FlushFailed",
    "GraphOrmError",
    "IdGeneration",
    "Identity",
    "IdentityConflict",
    "LoadState",
    "NotFound",
    "Ownership",
    "ProjectionError",
    "ReadOnlyRepository",
    "ReentrantLoad",
    "RelationshipGraph",
    "Repository",
    "SchemaInconsistency",
    "Session",
    "SessionFactory",
    "StaleReferenceAccess",
    "Status",
    "Storage",
    "StorageError",
    "ToMany",
    "ToOne",
    "ValueObject",
    "build_graph",
    "identity_of",
    "status_of",
]
