import pytest
from _pytest.fixtures import SubRequest

from shop import Shop, create_app, dto
from shop.settings import Settings


@pytest.fixture(params=["memory://", "sqlite://"])
def app(request: SubRequest) -> Shop:
    return create_app(Settings(database_url=request.param))


@pytest.fixture()
def member_id(app: Shop) -> int:
    request = dto.CreateMemberRequest(
        name="Kim", address=dto.AddressDto(city="Seoul", street="Gangnam-daero 1", zipcode="06000")
    )
    return app.members.create_member(request).id


@pytest.fixture()
def item_id(app: Shop) -> int:
    return app.items.create_item(dto.CreateItemRequest(name="JPA Book", price=10000, stock_quantity=10)).id
