import pytest

from steadystream_svc.card_format import format_card_number, format_cvv, format_expiry_date
from steadystream_svc.plans import PLAN_PRICING, STRIPE_PLANS, get_plan


@pytest.mark.parametrize("value, expected", [
    ('4242424242424242', '4242 4242 4242 4242'),
    ('4242-4242 42', '4242 4242 42'),
    ('42424242424242429999', '4242 4242 4242 4242'),
    ('abc', ''),
    ('', ''),
])
def test_format_card_number(value, expected):
    assert format_card_number(value) == expected


@pytest.mark.parametrize("value, expected", [
    ('1', '1'),
    ('12', '12/'),
    ('1225', '12/25'),
    ('12/2599', '12/25'),
])
def test_format_expiry_date(value, expected):
    assert format_expiry_date(value) == expected


def test_format_cvv():
    assert format_cvv('12a34-5') == '1234'


def test_plan_catalog():
    assert get_plan('premium-12m')['amount'] == 315
    assert {plan: entry['price'] for plan, entry in STRIPE_PLANS.items()} == {
        'standard': 2000, 'premium': 3500, 'ultimate': 4500,
    }
    assert 'free-trial' in PLAN_PRICING
    with pytest.raises(ValueError, match="Unknown plan 'gold'"):
        get_plan('gold')
