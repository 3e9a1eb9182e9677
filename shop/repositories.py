import typing

from graph_orm import Repository
from shop.domain import Item, Member, Order, OrderStatus


class MemberRepository(Repository[Member, int]):
    def find_by_name(self, name: str) -> typing.List[Member]:
        return self.find_by(name=name)


class ItemRepository(Repository[Item, int]):
    pass


class OrderRepository(Repository[Order, int]):
    def search(
        self, member_name: typing.Optional[str] = None, status: typing.Optional[OrderStatus] = None
    ) -> typing.List[Order]:
        orders = self.all()
        if status is not None:
            orders = [order for order in orders if order.status is status]
        if member_name is not None:
            orders = [order for order in orders if order.member.get().name == member_name]
        return orders
