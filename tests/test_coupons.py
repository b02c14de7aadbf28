from datetime import timedelta
from decimal import Decimal

import pytest

from atelier.core.dates import utc_now
from atelier.core.exceptions import BusinessRuleError, ConflictError
from atelier.models.coupon import Coupon, DiscountType
from atelier.services.coupon_service import CartLine, CouponService, compute_discount


def make_coupon(**kwargs) -> Coupon:
    values = dict(
        code="TABASKI",
        discount_type=DiscountType.PERCENTAGE.value,
        discount_value=Decimal("10"),
        usage_count=0,
        is_active=True,
        product_ids=[],
        excluded_product_ids=[],
        category_ids=[],
        excluded_category_ids=[],
    )
    values.update(kwargs)
    return Coupon(**values)


def test_percentage_discount_is_capped():
    coupon = make_coupon(discount_value=Decimal("20"), maximum_discount=Decimal("3000"))
    assert compute_discount(coupon, Decimal("10000")) == Decimal("2000.00")
    assert compute_discount(coupon, Decimal("50000")) == Decimal("3000.00")


def test_fixed_discount_never_exceeds_subtotal():
    coupon = make_coupon(discount_type=DiscountType.FIXED_CART.value, discount_value=Decimal("5000"))
    assert compute_discount(coupon, Decimal("3000")) == Decimal("3000.00")


def test_no_discount_below_minimum_order():
    coupon = make_coupon(minimum_order_amount=Decimal("20000"))
    assert compute_discount(coupon, Decimal("19999")) == Decimal("0")


async def test_validate_collects_every_failing_rule(db_session, product):
    db_session.add(make_coupon(
        code="EXPIRED",
        expires_at=utc_now() - timedelta(days=1),
        usage_limit=5,
        usage_count=5,
        excluded_product_ids=[str(product.id)],
    ))
    await db_session.flush()

    with pytest.raises(BusinessRuleError) as exc:
        await CouponService(db_session).validate("expired", items=[CartLine(product_id=product.id)])

    assert exc.value.errors == [
        "Ce code promo a expiré",
        "Ce code promo a atteint sa limite d'utilisation",
        "Certains produits du panier sont exclus de cette promotion",
    ]


async def test_validate_checks_category_restrictions(db_session, product):
    db_session.add(make_coupon(code="PAGNES", category_ids=["00000000-0000-0000-0000-000000000001"]))
    await db_session.flush()

    with pytest.raises(BusinessRuleError) as exc:
        await CouponService(db_session).validate("PAGNES", items=[CartLine(product_id=product.id)])
    assert exc.value.errors == ["Ce code promo ne s'applique à aucune catégorie du panier"]


async def test_per_user_limit(db_session, customer):
    service = CouponService(db_session)
    coupon = await service.create_coupon({
        "code": " bienvenue ",
        "discount_type": DiscountType.FIXED_CART.value,
        "discount_value": Decimal("1000"),
        "usage_limit_per_user": 1,
    })
    assert coupon.code == "BIENVENUE"

    await service.validate("BIENVENUE", user_id=customer.id)
    await service.record_usage(coupon, Decimal("1000"), user_id=customer.id)
    assert coupon.usage_count == 1

    with pytest.raises(BusinessRuleError) as exc:
        await service.validate("BIENVENUE", user_id=customer.id)
    assert exc.value.errors == ["Vous avez déjà utilisé ce code promo le nombre maximum de fois"]


async def test_unknown_or_inactive_coupon(db_session):
    db_session.add(make_coupon(code="OFF", is_active=False))
    await db_session.flush()
    service = CouponService(db_session)

    for code in ("OFF", "NOPE"):
        with pytest.raises(BusinessRuleError) as exc:
            await service.validate(code)
        assert exc.value.errors == ["Ce code promo n'existe pas ou n'est plus actif"]


async def test_duplicate_code_conflicts(db_session):
    service = CouponService(db_session)
    data = {"code": "NOEL", "discount_type": "PERCENTAGE", "discount_value": Decimal("5")}
    await service.create_coupon(data)
    with pytest.raises(ConflictError):
        await service.create_coupon(dict(data, code="noel"))


async def test_validate_endpoint(client, tenant_headers, db_session, product):
    db_session.add(make_coupon(code="TABASKI", maximum_discount=Decimal("2000")))
    db_session.add(make_coupon(code="FINI", expires_at=utc_now() - timedelta(days=1)))
    await db_session.commit()

    response = await client.post(
        "/api/v1/storefront/coupons/validate",
        json={"code": "tabaski", "subtotal": "25000", "items": [{"product_id": str(product.id)}]},
        headers=tenant_headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["valid"] is True
    assert Decimal(body["discount"]) == Decimal("2000")

    response = await client.post(
        "/api/v1/storefront/coupons/validate",
        json={"code": "fini", "subtotal": "25000"},
        headers=tenant_headers,
    )
    assert response.status_code == 400
    assert response.json() == {
        "valid": False,
        "code": "FINI",
        "discount_type": None,
        "discount_value": None,
        "discount": "0",
        "errors": ["Ce code promo a expiré"],
    }
