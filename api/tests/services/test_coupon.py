import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import uuid4
from sqlalchemy.exc import IntegrityError

import tables
from errors import ValidationError
from services.coupon import (
    REASON_LIMIT_REACHED, REASON_MIN_PURCHASE, REASON_NOT_FOUND,
    CouponLedger, CouponValidator, evaluate, normalize_code, quantize_money
)


NOW = datetime(2026, 3, 1, 12, 0, 0)


def coupon_row(**overrides) -> tables.Coupon:
    fields = dict(
        id=uuid4(),
        code='SAVE10',
        name='Save 10',
        discount_type='percentage',
        discount_value=Decimal('10'),
        min_purchase_amount=Decimal('50000'),
        usage_limit=5,
        usage_count=2,
        active=True,
        expires_at=NOW + timedelta(days=1),
        created_at=NOW - timedelta(days=30),
        deleted_at=None
    )
    fields.update(overrides)
    return tables.Coupon(**fields)


def test_percentage_discount():
    coupon = coupon_row()
    result = evaluate(coupon, Decimal('100000'), NOW)

    assert result.valid
    assert result.coupon_id == coupon.id
    assert result.discount_amount == Decimal('10000')
    assert result.reason is None


def test_percentage_discount_is_rounded_half_up():
    coupon = coupon_row(discount_value=Decimal('15'), min_purchase_amount=Decimal('0'))
    # 15% от 33333 = 4999.95
    assert evaluate(coupon, Decimal('33333'), NOW).discount_amount == Decimal('5000')
    # 15% от 10003 = 1500.45
    assert evaluate(coupon, Decimal('10003'), NOW).discount_amount == Decimal('1500')


def test_fixed_discount():
    coupon = coupon_row(discount_type='fixed', discount_value=Decimal('20000'))
    assert evaluate(coupon, Decimal('60000'), NOW).discount_amount == Decimal('20000')


def test_discount_never_exceeds_subtotal():
    coupon = coupon_row(discount_type='fixed', discount_value=Decimal('80000'), min_purchase_amount=Decimal('0'))
    assert evaluate(coupon, Decimal('60000'), NOW).discount_amount == Decimal('60000')

    coupon = coupon_row(discount_value=Decimal('100'), min_purchase_amount=Decimal('0'))
    assert evaluate(coupon, Decimal('60000'), NOW).discount_amount == Decimal('60000')


@pytest.mark.parametrize('coupon', [
    None,
    coupon_row(active=False),
    coupon_row(expires_at=NOW - timedelta(seconds=1)),
    coupon_row(expires_at=NOW),
    coupon_row(deleted_at=NOW - timedelta(days=1)),
])
def test_unusable_coupon_is_not_found(coupon):
    result = evaluate(coupon, Decimal('100000'), NOW)
    assert not result.valid
    assert result.reason == REASON_NOT_FOUND
    assert result.discount_amount is None


def test_limit_reached():
    result = evaluate(coupon_row(usage_count=5), Decimal('100000'), NOW)
    assert not result.valid
    assert result.reason == REASON_LIMIT_REACHED


def test_unlimited_coupon():
    assert evaluate(coupon_row(usage_limit=None, usage_count=1000), Decimal('100000'), NOW).valid


def test_minimum_purchase():
    result = evaluate(coupon_row(), Decimal('49999'), NOW)
    assert not result.valid
    assert result.reason == REASON_MIN_PURCHASE

    assert evaluate(coupon_row(), Decimal('50000'), NOW).valid


def test_rejection_priority():
    expired_and_exhausted = coupon_row(expires_at=NOW - timedelta(days=1), usage_count=5)
    assert evaluate(expired_and_exhausted, Decimal('10'), NOW).reason == REASON_NOT_FOUND

    exhausted_and_small = coupon_row(usage_count=5)
    assert evaluate(exhausted_and_small, Decimal('10'), NOW).reason == REASON_LIMIT_REACHED


@pytest.mark.parametrize('subtotal', [Decimal('0'), Decimal('-1')])
def test_subtotal_must_be_positive(subtotal: Decimal):
    with pytest.raises(ValidationError):
        evaluate(coupon_row(), subtotal, NOW)


def test_helpers():
    assert normalize_code('  save10 ') == 'SAVE10'
    assert quantize_money(Decimal('0.5')) == Decimal('1')
    assert quantize_money(Decimal('2.49')) == Decimal('2')


async def test_validator_normalizes_code(session_maker, make_coupon):
    coupon = await make_coupon()
    validator = CouponValidator(session_maker=session_maker)

    result = await validator.validate(' save10', Decimal('100000'))
    assert result.valid
    assert result.coupon_id == coupon.id
    assert result.discount_amount == Decimal('10000')

    result = await validator.validate('NOPE', Decimal('100000'))
    assert not result.valid
    assert result.reason == REASON_NOT_FOUND

    # Проверка ничего не списывает
    async with session_maker() as session:
        assert (await session.get(tables.Coupon, coupon.id)).usage_count == 2


async def test_validator_by_id(session_maker, make_coupon):
    coupon = await make_coupon(usage_count=5)
    validator = CouponValidator(session_maker=session_maker)

    assert (await validator.validate_by_id(coupon.id, Decimal('100000'))).reason == REASON_LIMIT_REACHED
    assert (await validator.validate_by_id(uuid4(), Decimal('100000'))).reason == REASON_NOT_FOUND


@pytest.mark.parametrize('code', ['', '   '])
async def test_validator_requires_code(session_maker, code: str):
    with pytest.raises(ValidationError):
        await CouponValidator(session_maker=session_maker).validate(code, Decimal('100000'))


async def test_ledger_redeem(session_maker, make_coupon):
    coupon = await make_coupon(usage_limit=3, usage_count=2)

    async with session_maker() as session, session.begin():
        await CouponLedger().redeem(session, coupon.id)

    async with session_maker() as session:
        assert (await session.get(tables.Coupon, coupon.id)).usage_count == 3

    # Сверх лимита не дает уйти check constraint
    with pytest.raises(IntegrityError):
        async with session_maker() as session, session.begin():
            await CouponLedger().redeem(session, coupon.id)

    async with session_maker() as session:
        assert (await session.get(tables.Coupon, coupon.id)).usage_count == 3


async def test_ledger_unknown_coupon(session_maker):
    with pytest.raises(ValidationError):
        async with session_maker() as session, session.begin():
            await CouponLedger().redeem(session, uuid4())
