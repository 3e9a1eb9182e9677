from typing import Dict, Type

import attr

from graph_orm.abstract_entity_tree import AbstractEntityTree
from graph_orm.entity import Entity


@attr.s(auto_attribs=True)
class Registry:
    entities_by_name: Dict[str, Type[Entity]] = attr.Factory(dict)
    entities_to_aets: Dict[Type[Entity], AbstractEntityTree] = attr.Factory(dict)

    def register(self, entity_cls: Type[Entity]) -> None:
        self.entities_by_name[entity_cls.__name__] = entity_cls

    def resolve(self, target) -> Type[Entity]:
        if isinstance(target, str):
            return self.entities_by_name[target]
        if target in self.entities_by_name.values():
            return target
        raise KeyError(target)
