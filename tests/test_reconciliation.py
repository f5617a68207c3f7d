import datetime as dt

import pytest
from sqlalchemy import func, select

from app.models import Order, OrderItem, ProductSku, Sale, StockDebit
from app.services.reconciliation import (
    map_payment_status,
    parse_provider_datetime,
    payment_order_reference,
    reconcile_payment,
)
from app.services.sales import sale_note


@pytest.mark.parametrize(
    "status, expected",
    [
        ("approved", "approved"),
        ("pending", "pending"),
        ("rejected", "rejected"),
        ("in_process", "in_process"),
        ("refunded", "unknown"),
        ("charged_back", "unknown"),
        (None, "unknown"),
        (42, "unknown"),
    ],
)
def test_map_payment_status(status, expected):
    assert map_payment_status(status) == expected


def test_parse_provider_datetime():
    parsed = parse_provider_datetime("2024-05-01T10:00:00.000-04:00")
    assert parsed == dt.datetime(2024, 5, 1, 14, 0, tzinfo=dt.timezone.utc)
    assert parse_provider_datetime("garbage") is None
    assert parse_provider_datetime(None) is None


def test_payment_order_reference_falls_back_to_metadata():
    assert payment_order_reference({"external_reference": "abc"}) == "abc"
    assert payment_order_reference({"metadata": {"order_id": "xyz"}}) == "xyz"
    assert payment_order_reference({}) is None


@pytest.mark.asyncio
async def test_unknown_status_sets_unknown_without_effects(db, make_product, make_order, fetch):
    product = await make_product("taza", stock=5)
    order = await make_order([(product, 1)])

    result = await reconcile_payment(db, status="refunded", external_reference=order.id, payment_id="1")
    assert result.found
    assert result.status == "unknown"

    assert await fetch.scalar(select(Order.status).where(Order.id == order.id)) == "unknown"
    assert await fetch.scalar(select(func.count(Sale.id))) == 0
    assert await fetch.scalar(select(ProductSku.stock).where(ProductSku.id == product.skus[0].id)) == 5


@pytest.mark.asyncio
async def test_approved_creates_one_sale_per_item_once(db, make_product, make_order, fetch):
    products = [await make_product(f"p{i}", price=f"{10 * (i + 1)}.00") for i in range(3)]
    order = await make_order([(p, i + 1) for i, p in enumerate(products)])
    paid_at = dt.datetime(2024, 5, 1, 14, 0, tzinfo=dt.timezone.utc)

    first = await reconcile_payment(
        db, status="approved", external_reference=order.id, payment_id="9", paid_at=paid_at
    )
    assert first.sales_created == 3
    assert first.transitioned

    second = await reconcile_payment(
        db, status="approved", external_reference=order.id, payment_id="9", paid_at=paid_at
    )
    assert second.sales_created == 0
    assert not second.transitioned

    sales = await fetch.scalars(select(Sale).order_by(Sale.order_item_id))
    assert len(sales) == 3
    by_item = {s.order_item_id: s for s in sales}
    for item in order.items:
        sale = by_item[item.id]
        assert sale.name == item.name
        assert sale.quantity == item.quantity
        assert sale.price == item.unit_price
        assert sale.cost == 0
        assert sale.channel == "online"
        assert sale.note == sale_note(order.id, f"MP:{order.id}:{item.id}")
        assert sale.note.startswith(f"Venta online MP - Orden #{order.id[:8]}")
        assert sale.date.replace(tzinfo=None) == paid_at.replace(tzinfo=None)


@pytest.mark.asyncio
async def test_legacy_note_key_prevents_duplicate(db, make_product, make_order, fetch):
    product = await make_product("iman")
    order = await make_order([(product, 2)])
    item = order.items[0]
    # продажа, записанная до появления колонок дедупликации
    db.add(
        Sale(
            name=item.name,
            quantity=2,
            price=item.unit_price,
            date=dt.datetime(2024, 1, 1, tzinfo=dt.timezone.utc),
            note=f"Venta online MP - Orden #{order.id[:8]} | MP:{order.id}:{item.id}",
            channel="online",
        )
    )
    await db.commit()

    result = await reconcile_payment(db, status="approved", external_reference=order.id)
    assert result.sales_created == 0
    assert await fetch.scalar(select(func.count(Sale.id))) == 1


@pytest.mark.asyncio
async def test_stock_debit_floors_at_zero_and_runs_once(db, make_product, make_order, fetch):
    products = [
        await make_product("a", stock=5),
        await make_product("b", stock=0),
        await make_product("c", stock=3),
    ]
    order = await make_order(list(zip(products, [2, 1, 3])))
    sku_ids = [p.skus[0].id for p in products]

    async def stocks():
        return [
            await fetch.scalar(select(ProductSku.stock).where(ProductSku.id == sid)) for sid in sku_ids
        ]

    first = await reconcile_payment(db, status="approved", external_reference=order.id)
    assert first.stock_debited
    assert await stocks() == [3, 0, 0]

    second = await reconcile_payment(db, status="approved", external_reference=order.id)
    assert not second.stock_debited
    assert await stocks() == [3, 0, 0]

    assert await fetch.scalar(select(func.count(StockDebit.id))) == 1
    raw = await fetch.scalar(select(Order.raw).where(Order.id == order.id))
    assert raw["stockDebited"] is True


@pytest.mark.asyncio
async def test_repeated_sku_in_one_order_is_debited_per_line(db, make_product, make_order, fetch):
    product = await make_product("vaso", stock=10)
    order = await make_order([(product, 2), (product, 3)])

    await reconcile_payment(db, status="approved", external_reference=order.id)
    assert await fetch.scalar(select(ProductSku.stock).where(ProductSku.id == product.skus[0].id)) == 5


@pytest.mark.asyncio
async def test_stock_flag_survives_raw_replacement(db, make_product, make_order, fetch):
    product = await make_product("pluma", stock=2)
    order = await make_order([(product, 1)])

    await reconcile_payment(db, status="approved", external_reference=order.id, raw={"id": 1, "status": "approved"})
    await reconcile_payment(db, status="approved", external_reference=order.id, raw={"id": 1, "status": "approved", "v": 2})

    raw = await fetch.scalar(select(Order.raw).where(Order.id == order.id))
    assert raw["v"] == 2
    assert raw["stockDebited"] is True


@pytest.mark.asyncio
async def test_lookup_by_preference_id(db, make_product, make_order, fetch):
    product = await make_product("libreta")
    order = await make_order([(product, 1)], preference_id="pref-1")

    result = await reconcile_payment(db, status="pending", preference_id="pref-1")
    assert result.found
    assert result.order_id == order.id
    assert await fetch.scalar(select(Order.status).where(Order.id == order.id)) == "pending"


@pytest.mark.asyncio
async def test_missing_order_is_reported_not_raised(db):
    result = await reconcile_payment(db, status="approved", external_reference="nope", preference_id="nope")
    assert result.found is False
    assert result.sales_created == 0


@pytest.mark.asyncio
async def test_item_without_resolvable_sku_is_skipped(db, make_product, make_order, fetch):
    product = await make_product(
        "postal",
        skus=[{"sku": "postal-a", "variant": "A", "stock": 4}, {"sku": "postal-b", "variant": "B", "stock": 4}],
    )
    # позиция без sku_id, у товара два SKU: неоднозначно
    order = await make_order([(product, 1)])
    async with db.begin():
        item = await db.get(OrderItem, order.items[0].id)
        item.sku_id = None

    result = await reconcile_payment(db, status="approved", external_reference=order.id)
    assert result.sales_created == 1
    assert result.stock_debited
    stocks = await fetch.scalars(select(ProductSku.stock).order_by(ProductSku.id))
    assert stocks == [4, 4]


@pytest.mark.asyncio
async def test_raw_stock_flag_blocks_second_debit(db, make_product, make_order, fetch):
    product = await make_product("agenda", stock=5)
    # заказ, списанный до появления таблицы stock_debits
    order = await make_order([(product, 2)], raw={"stockDebited": True})

    result = await reconcile_payment(db, status="approved", external_reference=order.id)
    assert result.sales_created == 1
    assert result.stock_debited is False
    assert await fetch.scalar(select(ProductSku.stock).where(ProductSku.id == product.skus[0].id)) == 5
    assert await fetch.scalar(select(func.count(StockDebit.id)).where(StockDebit.order_id == order.id)) == 1


@pytest.mark.asyncio
async def test_sale_date_falls_back_to_reconcile_time(db, make_product, make_order):
    product = await make_product("cuaderno")
    order = await make_order([(product, 1)])
    before = dt.datetime.now(dt.timezone.utc)

    result = await reconcile_payment(db, status="approved", external_reference=order.id)
    assert result.paid_at is not None
    assert result.paid_at >= before
