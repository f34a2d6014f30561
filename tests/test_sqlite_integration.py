"""End-to-end tests against a real SQLite file"""

from datetime import datetime
from typing import Annotated

import pytest

import keel
from keel import BelongsTo, BelongsToMany, HasMany, KeelField, Model, get_driver
from keel.exceptions import QueryValidationError


@pytest.fixture
def shop():
    class Customer(Model, table="customers", soft_deletes=True):
        id: Annotated[int | None, KeelField(primary_key=True)] = None
        name: str
        email: Annotated[str, KeelField(unique=True)]
        age: int = 0
        tags: list[str] = []
        created_at: datetime | None = None
        updated_at: datetime | None = None
        deleted_at: datetime | None = None
        orders: Annotated[list["Order"], HasMany()]
        segments: Annotated[list["Segment"], BelongsToMany()]

    class Order(Model, table="orders", timestamps=False):
        id: Annotated[int | None, KeelField(primary_key=True)] = None
        total: float = 0.0
        customer: Annotated[Customer, BelongsTo()]

    class Segment(Model, table="segments", timestamps=False):
        id: Annotated[int | None, KeelField(primary_key=True)] = None
        name: str

    return Customer, Order, Segment


@pytest.mark.asyncio
async def test_create_find_update_delete(shop, db_url):
    Customer, *_ = shop
    await keel.connect(db_url, auto_migrate=True)

    ann = await Customer.create(name="Ann", email="ann@example.com", age=31, tags=["vip"])
    assert ann.id == 1
    assert ann.created_at is not None

    found = await Customer.get(ann.id)
    assert found.name == "Ann"
    assert found.tags == ["vip"]
    assert isinstance(found.created_at, datetime)

    assert await Customer.update(ann.id, {"age": 32}) == 1
    await ann.refresh()
    assert ann.age == 32

    ann.name = "Annie"
    await ann.save()
    assert (await Customer.find("ann@example.com", key="email")).name == "Annie"

    await ann.delete()
    assert await Customer.get(ann.id) is None
    with pytest.raises(LookupError):
        await ann.refresh()


@pytest.mark.asyncio
async def test_fluent_queries(shop, db_url):
    Customer, *_ = shop
    await keel.connect(db_url, auto_migrate=True)
    await Customer.bulk_create(
        [
            Customer(name=f"c{i}", email=f"c{i}@example.com", age=i * 10, tags=["a"] if i % 2 else [])
            for i in range(1, 6)
        ]
    )

    adults = await Customer.where(Customer.age >= 30).order_by("age", "desc").all()
    assert [c.name for c in adults] == ["c5", "c4", "c3"]

    assert await Customer.query().where("age", "between", (20, 40)).count() == 3
    assert await Customer.query().where_in("name", ["c1", "zz"]).exists()
    assert await Customer.query().where_json_contains("tags", "a").count() == 3
    assert await Customer.query().where_raw("age > ? AND name != 'c5'", [25]).count() == 2
    assert await Customer.query().select_sum("age", "total").sum() == {"total": 150}

    page = await Customer.query().order_by("id").paginate(2, page=3)
    assert page.total == 5
    assert page.last_page == 3
    assert [c.name for c in page.data] == ["c5"]


@pytest.mark.asyncio
async def test_soft_delete_lifecycle(shop, db_url):
    Customer, *_ = shop
    await keel.connect(db_url, auto_migrate=True)
    bo = await Customer.create(name="Bo", email="bo@example.com")
    await Customer.create(name="Cy", email="cy@example.com")

    await bo.soft_delete()
    assert bo.trashed

    assert [c.name for c in await Customer.query().without_trashed().all()] == ["Cy"]
    assert [c.name for c in await Customer.only_trashed().all()] == ["Bo"]
    assert len(await Customer.with_trashed().all()) == 2

    await bo.restore()
    assert not bo.trashed
    assert await Customer.only_trashed().count() == 0

    await bo.force_delete()
    assert await Customer.with_trashed().count() == 1


@pytest.mark.asyncio
async def test_eager_loading_against_sqlite(shop, db_url):
    Customer, Order, Segment = shop
    await keel.connect(db_url, auto_migrate=True)

    ann = await Customer.create(name="Ann", email="ann@example.com")
    bo = await Customer.create(name="Bo", email="bo@example.com")
    for total in (10.0, 20.0):
        await Order.create(total=total, customer_id=ann.id)
    staff = await Segment.create(name="staff")
    beta = await Segment.create(name="beta")
    await get_driver().execute(
        "INSERT INTO customer_segment (customer_id, segment_id) VALUES (?, ?), (?, ?)",
        [ann.id, beta.id, ann.id, staff.id],
    )

    customers = await Customer.with_(["orders.customer", "segments"]).order_by("id").all()

    assert [o.total for o in customers[0].orders] == [10.0, 20.0]
    assert customers[0].orders[0].customer.name == "Ann"
    assert [g.name for g in customers[0].segments] == ["beta", "staff"]
    assert customers[1].orders == []
    assert customers[1].segments == []

    order = (await Order.with_("customer").all())[0]
    assert order.customer.id == ann.id
    assert bo.id == 2


@pytest.mark.asyncio
async def test_get_or_create_and_update_or_create(shop, db_url):
    Customer, *_ = shop
    await keel.connect(db_url, auto_migrate=True)

    first, created = await Customer.get_or_create(
        email="dee@example.com", defaults={"name": "Dee"}
    )
    again, created_again = await Customer.get_or_create(
        email="dee@example.com", defaults={"name": "Other"}
    )
    assert created and not created_again
    assert again.id == first.id
    assert again.name == "Dee"

    updated, created = await Customer.update_or_create(
        email="dee@example.com", defaults={"age": 44}
    )
    assert not created
    assert (await Customer.get(first.id)).age == 44


@pytest.mark.asyncio
async def test_transaction_rolls_back_on_sqlite(shop, db_url):
    Customer, *_ = shop
    await keel.connect(db_url, auto_migrate=True)

    with pytest.raises(RuntimeError):
        async with keel.transaction():
            await Customer.create(name="Eve", email="eve@example.com")
            raise RuntimeError("abort")
    assert await Customer.query().count() == 0

    async with keel.transaction():
        await Customer.create(name="Fay", email="fay@example.com")
    assert await Customer.query().count() == 1


@pytest.mark.asyncio
async def test_auto_migrate_is_idempotent(shop, db_url):
    Customer, *_ = shop
    await keel.connect(db_url, auto_migrate=True)
    await Customer.create(name="Gus", email="gus@example.com")

    await keel.connect(db_url, auto_migrate=True)

    assert await Customer.query().count() == 1


@pytest.mark.asyncio
async def test_where_raw_whitelist_covers_quoted_identifiers(db_url):
    class Account(Model, table="accounts", timestamps=False, allowed_fields=("id", "name")):
        id: Annotated[int | None, KeelField(primary_key=True)] = None
        name: str
        secret: str = ""

    await keel.connect(db_url, auto_migrate=True)
    await Account.create(name="a", secret="hunter2")

    for sql in ('"secret" = ?', "`secret` = ?"):
        with pytest.raises(QueryValidationError):
            await Account.query().where_raw(sql, ["hunter2"]).all()
    assert [a.name for a in await Account.query().where_raw('"name" = ?', ["a"]).all()] == ["a"]
