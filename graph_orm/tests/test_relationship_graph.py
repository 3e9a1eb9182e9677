import pytest

from graph_orm import ALL, Cascade, Entity, Fetch, Identity, Ownership, ToMany, ToOne
from graph_orm.exceptions import SchemaInconsistency
from graph_orm.relationship_graph import RelationshipGraph, build_graph
from graph_orm.relationships import Cardinality


def test_builds_bidirectional_graph():
    class Team(Entity):
        id: Identity[int]
        name: str

        players = ToMany("Player", mapped_by="team", cascade=ALL)

    class Player(Entity):
        id: Identity[int]
        nick: str

        team = ToOne(Team)

    graph = build_graph([Team, Player])

    assert graph.counterpart(Team.players) is Player.team
    assert graph.counterpart(Player.team) is Team.players
    assert Player.team.counterpart == "players"
    assert Team.players.target is Player
    assert graph.owning(Player) == [Player.team]
    assert graph.owning(Team) == []
    assert graph.incoming(Team) == [Player.team]
    assert graph.foreign_key_column(Player.team) == "team_id"
    assert graph.foreign_key_column(Team.players) == "team_id"
    assert graph.table_name(Player) == "players"
    assert graph.identity_type(Team) is int
    assert graph.node(Team).name == "team"


def test_relationship_defaults():
    class Parent(Entity):
        id: Identity[int]

        children = ToMany("Child", mapped_by="parent")

    class Child(Entity):
        id: Identity[int]

        parent = ToOne(Parent)

    build_graph([Parent, Child])

    assert Child.parent.fetch is Fetch.EAGER
    assert Child.parent.ownership is Ownership.OWNING
    assert Parent.children.fetch is Fetch.LAZY
    assert Parent.children.ownership is Ownership.INVERSE
    assert not Parent.children.cascades(Cascade.PERSIST)


def test_unknown_target_is_rejected():
    class Orphan(Entity):
        id: Identity[int]

        parent = ToOne("Nobody")

    with pytest.raises(SchemaInconsistency):
        build_graph([Orphan])


def test_missing_counterpart_is_rejected():
    class Author(Entity):
        id: Identity[int]

        books = ToMany("Book", mapped_by="writer")

    class Book(Entity):
        id: Identity[int]

        author = ToOne(Author)

    with pytest.raises(SchemaInconsistency):
        build_graph([Author, Book])


def test_two_owning_sides_are_rejected():
    class Husband(Entity):
        id: Identity[int]

        wife = ToOne("Wife", back_populates="husband")

    class Wife(Entity):
        id: Identity[int]

        husband = ToOne(Husband, back_populates="wife")

    with pytest.raises(SchemaInconsistency, match="two owning sides"):
        build_graph([Husband, Wife])


def test_no_owning_side_is_rejected():
    class Left(Entity):
        id: Identity[int]

        right = ToOne("Right", mapped_by="left")

    class Right(Entity):
        id: Identity[int]

        left = ToOne(Left, mapped_by="right")

    with pytest.raises(SchemaInconsistency, match="no owning side"):
        build_graph([Left, Right])


def test_owning_to_many_is_rejected():
    class Tag(Entity):
        id: Identity[int]

    class Article(Entity):
        id: Identity[int]

        tags = ToMany(Tag)

    with pytest.raises(SchemaInconsistency):
        build_graph([Tag, Article])


def test_one_owning_side_mapped_twice_is_rejected():
    class Company(Entity):
        id: Identity[int]

        staff = ToMany("Employee", mapped_by="employer")
        workers = ToMany("Employee", mapped_by="employer")

    class Employee(Entity):
        id: Identity[int]

        employer = ToOne(Company)

    with pytest.raises(SchemaInconsistency):
        build_graph([Company, Employee])


def test_mapped_by_and_back_populates_are_exclusive():
    with pytest.raises(SchemaInconsistency):
        ToOne("Anything", mapped_by="a", back_populates="b")


def test_graph_is_frozen_once_built():
    class Lonely(Entity):
        id: Identity[int]

    class Another(Entity):
        id: Identity[int]

    graph = build_graph([Lonely])

    with pytest.raises(SchemaInconsistency):
        graph.add_entity(Another)
    with pytest.raises(SchemaInconsistency):
        graph.build()


def test_relationships_can_be_registered_explicitly():
    class Customer(Entity):
        id: Identity[int]
        name: str

    class Invoice(Entity):
        id: Identity[int]
        amount: int

    graph = RelationshipGraph()
    graph.add_entity(Customer).add_entity(Invoice)
    graph.add_relationship(Invoice, "customer", Customer, Cardinality.TO_ONE, fetch=Fetch.LAZY, nullable=False)
    graph.add_relationship(
        Customer, "invoices", "Invoice", Cardinality.TO_MANY, Ownership.INVERSE, cascade=ALL, counterpart="customer"
    )
    graph.build()

    assert graph.counterpart(Invoice.customer) is Customer.invoices
    assert graph.owning(Invoice) == [Invoice.customer]
    assert [node.name for node in graph.node(Customer).relationships] == ["invoices"]
    assert Customer(name="Ada").invoices.all() == []


def test_explicit_registration_rejects_duplicates():
    class Box(Entity):
        id: Identity[int]
        label: str

    graph = RelationshipGraph()
    graph.add_entity(Box)

    with pytest.raises(SchemaInconsistency):
        graph.add_relationship(Box, "label", Box, Cardinality.TO_ONE)
