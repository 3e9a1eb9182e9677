import typing


class GraphOrmError(Exception):
    """Base class of all errors raised by the persistence core."""


class NotFound(GraphOrmError):
    def __init__(self, entity_type: typing.Any, entity_id: typing.Any) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{_type_name(entity_type)} with id {entity_id!r} does not exist")


class IdentityConflict(GraphOrmError):
    def __init__(self, entity_type: typing.Any, entity_id: typing.Any, message: str = "") -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            message or f"{_type_name(entity_type)} id {entity_id!r} is already bound to another instance"
        )


class SchemaInconsistency(GraphOrmError):
    """Relationship graph misdeclaration. Detected at startup, never recovered."""


class StaleReferenceAccess(GraphOrmError):
    def __init__(self, entity: typing.Any, field: str, reason: str) -> None:
        self.entity = entity
        self.field = field
        super().__init__(f"Cannot access {type(entity).__name__}.{field}: owner is {reason}")


class ReentrantLoad(GraphOrmError):
    def __init__(self, entity: typing.Any, field: str) -> None:
        self.entity = entity
        self.field = field
        super().__init__(f"{type(entity).__name__}.{field} accessed while it is being loaded")


class DanglingReference(GraphOrmError):
    def __init__(self, entity: typing.Any, field: str, message: str) -> None:
        self.entity = entity
        self.field = field
        super().__init__(f"{type(entity).__name__}.{field}: {message}")


class FlushFailed(GraphOrmError):
    def __init__(self, entity: typing.Any, cause: BaseException) -> None:
        self.entity = entity
        self.cause = cause
        super().__init__(f"Flush failed while writing {type(entity).__name__}: {type(cause).__name__}")


class EntityNotManaged(GraphOrmError):
    def __init__(self, entity: typing.Any, reason: str) -> None:
        self.entity = entity
        super().__init__(f"{type(entity).__name__} is not managed by this session: {reason}")


class ProjectionError(GraphOrmError):
    pass


def _type_name(entity_type: typing.Any) -> str:
    return getattr(entity_type, "__name__", str(entity_type))
