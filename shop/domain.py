import datetime
import enum
import typing

import attr

from graph_orm import ALL, Entity, Fetch, Identity, ToMany, ToOne, ValueObject


class DomainError(Exception):
    """Business rule violation. The message is meant for the API caller."""


class NotEnoughStock(DomainError):
    pass


class DuplicateMember(DomainError):
    pass


class OrderAlreadyDelivered(DomainError):
    pass


class OrderStatus(enum.Enum):
    ORDER = "ORDER"
    CANCEL = "CANCEL"


class DeliveryStatus(enum.Enum):
    READY = "READY"
    COMP = "COMP"


class Address(ValueObject):
    city: str
    street: str
    zipcode: str


class Member(Entity):
    id: Identity[int]
    name: str
    address: typing.Optional[Address] = None

    orders = ToMany("Order", mapped_by="member")


class Item(Entity):
    id: Identity[int]
    name: str
    price: int
    stock_quantity: int = 0

    def add_stock(self, quantity: int) -> None:
        self.stock_quantity += quantity

    def remove_stock(self, quantity: int) -> None:
        rest = self.stock_quantity - quantity
        if rest < 0:
            raise NotEnoughStock(f"Not enough stock of {self.name}")
        self.stock_quantity = rest


class Delivery(Entity):
    id: Identity[int]
    address: typing.Optional[Address] = None
    status: DeliveryStatus = DeliveryStatus.READY

    order = ToOne("Order", mapped_by="delivery")


class Order(Entity):
    id: Identity[int]
    order_date: datetime.datetime = attr.Factory(datetime.datetime.now)
    status: OrderStatus = OrderStatus.ORDER

    member = ToOne("Member", back_populates="orders", fetch=Fetch.LAZY, nullable=False)
    items = ToMany("OrderItem", mapped_by="order", cascade=ALL)
    delivery = ToOne("Delivery", back_populates="order", cascade=ALL, fetch=Fetch.LAZY)

    @classmethod
    def create(cls, member: Member, delivery: Delivery, *order_items: "OrderItem") -> "Order":
        order = cls()
        order.member.set(member, sync=True)
        order.delivery.set(delivery, sync=True)
        for order_item in order_items:
            order.items.add(order_item, sync=True)
        return order

    def cancel(self) -> None:
        if self.delivery.get().status is DeliveryStatus.COMP:
            raise OrderAlreadyDelivered("Delivered orders cannot be cancelled")
        self.status = OrderStatus.CANCEL
        for order_item in self.items:
            order_item.cancel()

    def total_price(self) -> int:
        return sum(order_item.total_price() for order_item in self.items)


class OrderItem(Entity):
    id: Identity[int]
    order_price: int
    count: int

    order = ToOne("Order", back_populates="items", fetch=Fetch.LAZY, nullable=False)
    item = ToOne("Item", fetch=Fetch.LAZY, nullable=False)

    @classmethod
    def create(cls, item: Item, order_price: int, count: int) -> "OrderItem":
        item.remove_stock(count)
        order_item = cls(order_price=order_price, count=count)
        order_item.item.set(item)
        return order_item

    def cancel(self) -> None:
        self.item.get().add_stock(self.count)

    def total_price(self) -> int:
        return self.order_price * self.count


ENTITIES = [Member, Item, Delivery, Order, OrderItem]
