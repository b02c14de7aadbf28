import pytest

from atelier.core.exceptions import BusinessRuleError
from atelier.database import async_session_factory
from atelier.models.catalog import Product, StockMovementType
from atelier.models.notification import NotificationChannel, NotificationTrigger
from atelier.services.catalog_service import CatalogService, slugify
from atelier.services.notification_service import NotificationService

from tests.test_notifications import add_template, logs


def test_slugify_strips_accents():
    assert slugify("Robe Wax Été") == "robe-wax-ete"
    assert slugify("  Boubou -- brodé ") == "boubou-brode"


async def test_adjust_stock_reads_committed_stock(db_session, product):
    service = CatalogService(db_session)
    loaded = await service.get_product(product.id)
    assert loaded.stock == 10

    async with async_session_factory() as other:
        row = await other.get(Product, product.id)
        row.stock = 7
        await other.commit()

    movement = await service.adjust_stock(product.id, -2, StockMovementType.SALE, notify=False)

    assert (movement.stock_before, movement.stock_after) == (7, 5)
    assert loaded.stock == 5


async def test_adjust_stock_never_goes_negative(db_session, product):
    with pytest.raises(BusinessRuleError, match="Insufficient stock for Robe wax"):
        await CatalogService(db_session).adjust_stock(product.id, -11, StockMovementType.SALE)
    assert product.stock == 10


async def test_stock_alerts_fire_when_thresholds_are_crossed(db_session, provider, product):
    await NotificationService(db_session).update_settings({"admin_phones": ["0707070707"]})
    await add_template(
        db_session, NotificationTrigger.LOW_STOCK_ADMIN, NotificationChannel.SMS,
        "Stock bas {product_name}: {stock_quantity}",
    )
    await add_template(
        db_session, NotificationTrigger.OUT_OF_STOCK_ADMIN, NotificationChannel.SMS, "Rupture {product_name}",
    )
    await add_template(
        db_session, NotificationTrigger.BACK_IN_STOCK, NotificationChannel.SMS, "{product_name} est de retour",
    )
    service = CatalogService(db_session)

    await service.adjust_stock(product.id, -5, StockMovementType.SALE)
    assert provider.requests == []

    await service.adjust_stock(product.id, -2, StockMovementType.SALE)
    await service.adjust_stock(product.id, -1, StockMovementType.SALE)
    await service.adjust_stock(product.id, -2, StockMovementType.SALE)
    assert [s["text"] for s in provider.sent("sms")] == ["Stock bas Robe wax: 3", "Rupture Robe wax"]
    assert {s["to"] for s in provider.sent("sms")} == {"2250707070707"}

    await service.adjust_stock(product.id, 4, StockMovementType.RESTOCK)

    triggers = [row.trigger for row in await logs(db_session)]
    assert NotificationTrigger.BACK_IN_STOCK.value in triggers
    assert triggers.count(NotificationTrigger.LOW_STOCK_ADMIN.value) == 1


async def test_initial_stock_is_recorded_without_alert(db_session, provider, category):
    product = await CatalogService(db_session).create_product(
        {"name": "Pagne tissé", "price": 12000, "stock": 6, "category_id": category.id, "images": []}
    )

    assert product.slug == "pagne-tisse"
    assert product.stock == 6
    movements = await CatalogService(db_session).list_movements(product.id)
    assert [(m.type, m.quantity) for m in movements["items"]] == [("RESTOCK", 6)]
    assert provider.requests == []
