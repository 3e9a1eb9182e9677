from graph_orm.mapping.populating_entity.visitor import EntityPopulatingVisitor, from_row
from graph_orm.mapping.populating_row.visitor import RowPopulatingVisitor, to_row

__all__ = ["EntityPopulatingVisitor", "RowPopulatingVisitor", "from_row", "to_row"]
