import datetime
import typing

from graph_orm.projection import UNSET, Dto, projected
from shop.domain import DeliveryStatus, OrderStatus


class AddressDto(Dto):
    city: str
    street: str
    zipcode: str


class CreateMemberRequest(Dto):
    name: str
    address: typing.Optional[AddressDto] = None


class CreateMemberResponse(Dto):
    id: int


class UpdateMemberRequest(Dto):
    name: str = UNSET
    address: typing.Optional[AddressDto] = UNSET


class MemberResponse(Dto):
    id: int
    name: str
    address: typing.Optional[AddressDto] = None


class MemberSummary(Dto):
    name: str


class MemberList(Dto):
    """Envelope so the listing can grow fields without breaking clients."""

    count: int
    data: typing.List[MemberSummary]


class CreateItemRequest(Dto):
    name: str
    price: int
    stock_quantity: int = 0


class ItemResponse(Dto):
    id: int
    name: str
    price: int
    stock_quantity: int


class PlaceOrderRequest(Dto):
    member_id: int
    item_id: int
    count: int


class OrderLine(Dto):
    item_name: str = projected("item.name")
    order_price: int
    count: int


class OrderResponse(Dto):
    id: int
    member_name: str = projected("member.name")
    order_date: datetime.datetime
    status: OrderStatus
    delivery_status: DeliveryStatus = projected("delivery.status")
    address: typing.Optional[AddressDto] = projected("delivery.address")
    lines: typing.List[OrderLine] = projected("items")
    total_price: int = projected("total_price")


class OrderSummary(Dto):
    id: int
    member_name: str = projected("member.name")
    status: OrderStatus
    total_price: int = projected("total_price")


class OrderList(Dto):
    count: int
    data: typing.List[OrderSummary]
