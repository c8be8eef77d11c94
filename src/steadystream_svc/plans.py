from typing import Any, Dict

# Crypto and card-to-crypto pricing, amounts in whole USD
PLAN_PRICING: Dict[str, Dict[str, Any]] = {
    'standard': {'amount': 20, 'currency': 'USD', 'name': 'Standard Plan (1 Month)'},
    'premium': {'amount': 35, 'currency': 'USD', 'name': 'Premium Plan (1 Month)'},
    'ultimate': {'amount': 45, 'currency': 'USD', 'name': 'Ultimate Plan (1 Month)'},

    'standard-6m': {'amount': 100, 'currency': 'USD', 'name': 'Standard Plan (6 Months)'},
    'premium-6m': {'amount': 175, 'currency': 'USD', 'name': 'Premium Plan (6 Months)'},
    'ultimate-6m': {'amount': 225, 'currency': 'USD', 'name': 'Ultimate Plan (6 Months)'},

    'standard-12m': {'amount': 180, 'currency': 'USD', 'name': 'Standard Plan (12 Months)'},
    'premium-12m': {'amount': 315, 'currency': 'USD', 'name': 'Premium Plan (12 Months)'},
    'ultimate-12m': {'amount': 405, 'currency': 'USD', 'name': 'Ultimate Plan (12 Months)'},

    'trial': {'amount': 1, 'currency': 'USD', 'name': 'Trial Plan'},
    'free-trial': {'amount': 1, 'currency': 'USD', 'name': 'Free Trial'},
}

# Stripe line items, amounts in cents
STRIPE_PLANS: Dict[str, Dict[str, Any]] = {
    'standard': {
        'price': 2000,
        'name': 'Standard Plan',
        'description': '7,000+ channels, HD quality, 2 devices',
    },
    'premium': {
        'price': 3500,
        'name': 'Premium Plan',
        'description': '10,000+ channels, Full HD quality, 4 devices',
    },
    'ultimate': {
        'price': 4500,
        'name': 'Ultimate Plan',
        'description': '10,000+ channels, 4K Ultra HD, 6 devices',
    },
}

# Order matters: the first keyword found in free text wins.
PLAN_KEYWORDS = ('standard', 'premium', 'ultimate', 'trial')

SUBSCRIPTION_DAYS = 30


def get_plan(plan_id: str) -> Dict[str, Any]:
    """
    Look up a plan in the crypto pricing table.

    :param plan_id: Plan identifier such as 'premium' or 'ultimate-6m'.
    :return: Pricing entry with amount, currency and name.
    :raises ValueError: if the plan is unknown.
    """
    plan = PLAN_PRICING.get(plan_id)
    if plan is None:
        raise ValueError(f"Unknown plan '{plan_id}'. Available plans: {', '.join(PLAN_PRICING)}")
    return plan
