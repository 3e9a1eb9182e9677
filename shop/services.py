import logging
import typing

from graph_orm import Session
from shop.domain import Delivery, DuplicateMember, Item, Member, Order, OrderItem, OrderStatus
from shop.repositories import ItemRepository, MemberRepository, OrderRepository

logger = logging.getLogger(__name__)


class MemberService:
    def __init__(self, session: Session) -> None:
        self._session = session
        self._members = MemberRepository(session)

    def join(self, member: Member) -> int:
        if self._members.find_by_name(member.name):
            raise DuplicateMember(f"Member {member.name} already exists")
        self._members.save(member)
        self._session.flush()
        logger.info("Member %s joined", member.id)
        return member.id

    def update(self, member_id: int, name: str) -> Member:
        member = self._members.get(member_id)
        member.name = name
        self._session.flush()
        return member

    def find_members(self) -> typing.List[Member]:
        return self._members.all()

    def find_one(self, member_id: int) -> Member:
        return self._members.get(member_id)


class ItemService:
    def __init__(self, session: Session) -> None:
        self._session = session
        self._items = ItemRepository(session)

    def save_item(self, item: Item) -> int:
        self._items.save(item)
        self._session.flush()
        return item.id

    def update_item(
        self,
        item_id: int,
        name: typing.Optional[str] = None,
        price: typing.Optional[int] = None,
        stock_quantity: typing.Optional[int] = None,
    ) -> Item:
        item = self._items.get(item_id)
        if name is not None:
            item.name = name
        if price is not None:
            item.price = price
        if stock_quantity is not None:
            item.stock_quantity = stock_quantity
        self._session.flush()
        return item

    def find_one(self, item_id: int) -> Item:
        return self._items.get(item_id)


class OrderService:
    def __init__(self, session: Session) -> None:
        self._session = session
        self._members = MemberRepository(session)
        self._items = ItemRepository(session)
        self._orders = OrderRepository(session)

    def order(self, member_id: int, item_id: int, count: int) -> int:
        member = self._members.get(member_id)
        item = self._items.get(item_id)

        delivery = Delivery(address=member.address)
        order_item = OrderItem.create(item, item.price, count)
        order = Order.create(member, delivery, order_item)

        self._orders.save(order)
        self._session.flush()
        logger.info("Member %s placed order %s", member_id, order.id)
        return order.id

    def cancel_order(self, order_id: int) -> Order:
        order = self._orders.get(order_id)
        order.cancel()
        self._session.flush()
        return order

    def remove_order(self, order_id: int) -> None:
        order = self._orders.get(order_id)
        # the member's collection is derived from the order side, keep it in step
        order.member.get().orders.remove(order)
        self._orders.remove(order)
        self._session.flush()

    def find_order(self, order_id: int) -> Order:
        return self._orders.get(order_id)

    def find_orders(
        self, member_name: typing.Optional[str] = None, status: typing.Optional[OrderStatus] = None
    ) -> typing.List[Order]:
        return self._orders.search(member_name=member_name, status=status)
