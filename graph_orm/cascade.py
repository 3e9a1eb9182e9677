import logging
import typing
from collections import deque

from graph_orm.relationship_graph import RelationshipGraph
from graph_orm.relationships import Cardinality, Cascade
from graph_orm.state import key_of

logger = logging.getLogger(__name__)


class CascadeEngine:
    def __init__(self, graph: RelationshipGraph) -> None:
        self._graph = graph

    def schedule(self, operation: Cascade, root: typing.Any) -> typing.List[typing.Any]:
        """Entities reached from ``root`` through relationships cascading ``operation``.

        Depth-first, root first, each entity once. For ``REMOVE`` the order is
        reversed so dependents come before what they hang off.
        """
        visited: typing.Set[typing.Tuple[type, typing.Any]] = set()
        ordered: typing.List[typing.Any] = []
        nodes_left: typing.Deque[typing.Any] = deque([root])

        while nodes_left:
            current = nodes_left.pop()
            key = key_of(current)
            if key in visited:
                continue
            visited.add(key)
            ordered.append(current)
            nodes_left.extend(reversed(list(self._related(current, operation))))

        if operation is Cascade.REMOVE:
            ordered.reverse()
        logger.debug("%s cascade from %s reached %d entities", operation.value, type(root).__name__, len(ordered))
        return ordered

    def _related(self, entity: typing.Any, operation: Cascade) -> typing.Iterator[typing.Any]:
        for relationship in self._graph.relationships(type(entity)).values():
            if not relationship.cascades(operation):
                continue
            ref = getattr(entity, relationship.name)
            if operation is Cascade.REMOVE:
                ref.materialize()
            elif not ref.is_loaded:
                # nothing new can hide behind a reference that was never loaded
                continue

            if relationship.cardinality is Cardinality.TO_ONE:
                if ref.loaded_value is not None:
                    yield ref.loaded_value
            else:
                yield from ref.loaded_items
