"""Use-case boundary of the shop.

Every method takes and returns DTOs only and runs in its own session. Errors
leave as ``ApiError`` with a status and a message that is safe to show: the
internal text of anything but a business rule violation is logged, never
returned.
"""
import functools
import logging
import typing

import attr

from graph_orm import NotFound, ProjectionError, SessionFactory
from graph_orm.projection import apply_request, from_request, to_response
from shop import dto
from shop.domain import DomainError, Item, Member, OrderStatus
from shop.services import ItemService, MemberService, OrderService

logger = logging.getLogger(__name__)


@attr.s(auto_attribs=True, auto_exc=True)
class ApiError(Exception):
    status: int
    message: str


F = typing.TypeVar("F", bound=typing.Callable[..., typing.Any])


def translate_errors(func: F) -> F:
    @functools.wraps(func)
    def wrapper(*args: typing.Any, **kwargs: typing.Any) -> typing.Any:
        try:
            return func(*args, **kwargs)
        except ApiError:
            raise
        except NotFound as error:
            logger.info("%s: %s", func.__name__, error)
            raise ApiError(404, "no such resource") from error
        except DomainError as error:
            raise ApiError(400, str(error)) from error
        except ProjectionError as error:
            logger.info("%s: %s", func.__name__, error)
            raise ApiError(400, "invalid request") from error
        except Exception as error:
            logger.exception("%s failed", func.__name__)
            raise ApiError(500, "request failed") from error

    return typing.cast(F, wrapper)


class MemberApi:
    def __init__(self, sessions: SessionFactory) -> None:
        self._sessions = sessions

    @translate_errors
    def create_member(self, request: dto.CreateMemberRequest) -> dto.CreateMemberResponse:
        with self._sessions() as session:
            member_id = MemberService(session).join(from_request(request, Member))
        return dto.CreateMemberResponse(id=member_id)

    @translate_errors
    def update_member(self, member_id: int, request: dto.UpdateMemberRequest) -> dto.MemberResponse:
        with self._sessions() as session:
            member = MemberService(session).find_one(member_id)
            apply_request(request, member)
            session.flush()
            return to_response(member, dto.MemberResponse)

    @translate_errors
    def get_member(self, member_id: int) -> dto.MemberResponse:
        with self._sessions() as session:
            return to_response(MemberService(session).find_one(member_id), dto.MemberResponse)

    @translate_errors
    def list_members(self) -> dto.MemberList:
        with self._sessions() as session:
            members = [to_response(member, dto.MemberSummary) for member in MemberService(session).find_members()]
        return dto.MemberList(count=len(members), data=members)


class ItemApi:
    def __init__(self, sessions: SessionFactory) -> None:
        self._sessions = sessions

    @translate_errors
    def create_item(self, request: dto.CreateItemRequest) -> dto.ItemResponse:
        with self._sessions() as session:
            service = ItemService(session)
            item = service.find_one(service.save_item(from_request(request, Item)))
            return to_response(item, dto.ItemResponse)

    @translate_errors
    def get_item(self, item_id: int) -> dto.ItemResponse:
        with self._sessions() as session:
            return to_response(ItemService(session).find_one(item_id), dto.ItemResponse)


class OrderApi:
    def __init__(self, sessions: SessionFactory) -> None:
        self._sessions = sessions

    @translate_errors
    def place_order(self, request: dto.PlaceOrderRequest) -> dto.OrderResponse:
        with self._sessions() as session:
            service = OrderService(session)
            order_id = service.order(request.member_id, request.item_id, request.count)
            return to_response(service.find_order(order_id), dto.OrderResponse)

    @translate_errors
    def get_order(self, order_id: int) -> dto.OrderResponse:
        with self._sessions() as session:
            return to_response(OrderService(session).find_order(order_id), dto.OrderResponse)

    @translate_errors
    def list_orders(
        self, member_name: typing.Optional[str] = None, status: typing.Optional[OrderStatus] = None
    ) -> dto.OrderList:
        with self._sessions() as session:
            orders = [
                to_response(order, dto.OrderSummary)
                for order in OrderService(session).find_orders(member_name=member_name, status=status)
            ]
        return dto.OrderList(count=len(orders), data=orders)

    @translate_errors
    def cancel_order(self, order_id: int) -> dto.OrderResponse:
        with self._sessions() as session:
            return to_response(OrderService(session).cancel_order(order_id), dto.OrderResponse)

    @translate_errors
    def remove_order(self, order_id: int) -> None:
        with self._sessions() as session:
            OrderService(session).remove_order(order_id)
