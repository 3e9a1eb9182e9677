import pytest

from graph_orm import ALL, Cascade, Entity, Identity, ToMany, ToOne, build_graph
from graph_orm.cascade import CascadeEngine


class Catalog(Entity):
    id: Identity[int]
    name: str

    products = ToMany("Product", mapped_by="catalog", cascade=ALL)


class Product(Entity):
    id: Identity[int]
    name: str

    catalog = ToOne(Catalog, back_populates="products")
    manual = ToOne("Manual", back_populates="product", cascade=[Cascade.PERSIST])


class Manual(Entity):
    id: Identity[int]
    pages: int

    product = ToOne(Product, mapped_by="manual")


class Category(Entity):
    id: Identity[int]
    name: str

    parent = ToOne("Category", back_populates="children", cascade=ALL)
    children = ToMany("Category", mapped_by="parent", cascade=ALL)


@pytest.fixture()
def engine() -> CascadeEngine:
    return CascadeEngine(build_graph([Catalog, Product, Manual, Category]))


@pytest.fixture()
def catalog() -> Catalog:
    catalog = Catalog(name="Winter")
    for name in ("Skis", "Poles"):
        product = Product(name=name)
        product.manual.set(Manual(pages=12), sync=True)
        catalog.products.add(product, sync=True)
    return catalog


def test_persist_reaches_transitive_closure(engine: CascadeEngine, catalog: Catalog) -> None:
    reached = engine.schedule(Cascade.PERSIST, catalog)

    assert [type(entity).__name__ for entity in reached] == ["Catalog", "Product", "Manual", "Product", "Manual"]
    assert reached[0] is catalog


def test_cascade_follows_only_declared_operations(engine: CascadeEngine, catalog: Catalog) -> None:
    reached = engine.schedule(Cascade.REMOVE, catalog)

    assert sorted(type(entity).__name__ for entity in reached) == ["Catalog", "Product", "Product"]


def test_remove_cascade_lists_dependents_first(engine: CascadeEngine, catalog: Catalog) -> None:
    reached = engine.schedule(Cascade.REMOVE, catalog)

    assert reached[-1] is catalog


def test_cascade_does_not_follow_unflagged_side(engine: CascadeEngine, catalog: Catalog) -> None:
    product = catalog.products.all()[0]

    assert engine.schedule(Cascade.MERGE, product) == [product]


def test_cycles_terminate(engine: CascadeEngine) -> None:
    root, child = Category(name="Sports"), Category(name="Skiing")
    root.children.add(child, sync=True)

    from_child = engine.schedule(Cascade.PERSIST, child)
    from_root = engine.schedule(Cascade.REMOVE, root)

    assert from_child == [child, root]
    assert from_root == [child, root]


def test_entities_are_visited_once(engine: CascadeEngine) -> None:
    root = Category(name="Sports")
    for name in ("Skiing", "Climbing"):
        root.children.add(Category(name=name), sync=True)

    reached = engine.schedule(Cascade.PERSIST, root)

    assert len(reached) == 3
    assert len({id(entity) for entity in reached}) == 3
