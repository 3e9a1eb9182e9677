import logging
import typing

import attr

from graph_orm import SessionFactory
from shop.api import ApiError, ItemApi, MemberApi, OrderApi
from shop.domain import ENTITIES
from shop.settings import Settings, configure_logging

logger = logging.getLogger(__name__)


@attr.s(auto_attribs=True, frozen=True)
class Shop:
    sessions: SessionFactory
    members: MemberApi
    items: ItemApi
    orders: OrderApi


def create_app(settings: typing.Optional[Settings] = None, sessions: typing.Optional[SessionFactory] = None) -> Shop:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    if sessions is None:
        sessions = SessionFactory.from_config(settings.orm_config(), ENTITIES)
    logger.info("Shop started on %s", settings.database_url)
    return Shop(sessions=sessions, members=MemberApi(sessions), items=ItemApi(sessions), orders=OrderApi(sessions))


__all__ = ["ApiError", "Settings", "Shop", "configure_logging", "create_app"]
