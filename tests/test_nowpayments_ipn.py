import json
import logging
import datetime

import httpx
import pytest

from steadystream_svc.emails import EmailProvider, ResendEmailProvider
from steadystream_svc.megaott import MegaOTTClient
from steadystream_svc.models.payment import NowPaymentsRecord
from steadystream_svc.models.profile import Profile
from steadystream_svc.models.subscription import Subscription
from steadystream_svc.nowpayments import build_order_description, ipn_signature
from steadystream_svc.nowpayments_ipn import (
    ProfileNotFound,
    extract_order_metadata,
    map_payment_status,
    process_ipn,
)

USER_ID = '0f8fad5b-d9cb-469f-a165-70867728950e'
SECRET = 'ipn_secret'


class RecordingEmailProvider(EmailProvider):
    def __init__(self):
        self.sent = []

    def send(self, message):
        self.sent.append(message)
        return 'msg_1'


class FakeMegaOTT:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = 0

    def create_subscription(self, package_id, subscription_type='m3u', **kwargs):
        self.calls += 1
        if self.fail:
            raise RuntimeError('MegaOTT down')
        return {'id': 55, 'username': 'LINE0001', 'password': 'pw', 'dns_link': 'http://dns.example'}


def add_profile(db, **fields) -> Profile:
    profile = Profile(id=USER_ID, email='viewer@example.com', name='Viewer', **fields)
    db.add(profile)
    db.commit()
    return profile


@pytest.mark.parametrize("status, expected", [
    ('finished', 'active'),
    ('CONFIRMED', 'active'),
    ('completed', 'active'),
    ('sending', 'active'),
    ('waiting', 'pending'),
    ('confirming', 'pending'),
    ('partially_paid', 'pending'),
    ('pending', 'pending'),
    ('failed', 'inactive'),
    ('expired', 'inactive'),
    ('refunded', 'inactive'),
    (None, 'inactive'),
])
def test_map_payment_status(status, expected):
    assert map_payment_status(status) == expected


def test_extract_from_free_text():
    description = f"SteadyStream TV - Premium Plan (1 Month) subscription | user:{USER_ID} plan:premium email:viewer@example.com"
    metadata = extract_order_metadata(description)
    assert metadata.user_id == USER_ID
    assert metadata.plan_id == 'premium'
    assert metadata.email == 'viewer@example.com'


def test_extract_from_json_description():
    description = json.dumps({"userId": USER_ID, "planId": "Ultimate", "customer_email": "a@b.io"})
    metadata = extract_order_metadata(description)
    assert metadata.user_id == USER_ID
    assert metadata.plan_id == 'ultimate'
    assert metadata.email == 'a@b.io'


def test_extract_first_plan_keyword_wins():
    metadata = extract_order_metadata("Upgrade from ultimate to standard")
    assert metadata.plan_id == 'standard'


def test_extract_user_from_order_id():
    metadata = extract_order_metadata("SteadyStream TV - Trial Plan subscription", f"steadystream-1700000000000-{USER_ID}")
    assert metadata.user_id == USER_ID
    assert metadata.plan_id == 'trial'
    assert metadata.email is None


def test_extract_nothing():
    metadata = extract_order_metadata("Payment for goods")
    assert metadata.user_id is None
    assert metadata.plan_id is None
    assert metadata.email is None


def test_process_ipn_activates_profile(db_session):
    add_profile(db_session, subscription_status='pending')
    provider = RecordingEmailProvider()
    megaott = FakeMegaOTT()
    payload = {
        "payment_id": 101,
        "payment_status": "finished",
        "order_description": f"SteadyStream TV - Premium Plan subscription | user:{USER_ID} plan:premium",
    }

    result = process_ipn(payload, db_session, megaott=megaott, email_provider=provider)

    assert result == {'status': 'active', 'user_id': USER_ID, 'plan_id': 'premium'}
    profile = db_session.query(Profile).filter(Profile.id == USER_ID).one()
    assert profile.subscription_status == 'active'
    assert profile.subscription_tier == 'premium'
    remaining = profile.trial_end_date - datetime.datetime.utcnow()
    assert datetime.timedelta(days=29) < remaining <= datetime.timedelta(days=30)
    assert megaott.calls == 1
    assert db_session.query(Subscription).filter(Subscription.user_id == USER_ID).one().payment_method == 'crypto'
    assert len(provider.sent) == 1
    assert 'LINE0001' in provider.sent[0].html_body
    assert profile.welcome_email_sent is True


def test_process_ipn_pending_keeps_tier_without_plan(db_session):
    add_profile(db_session, subscription_status='inactive', subscription_tier='ultimate')
    payload = {"payment_id": 102, "payment_status": "confirming", "order_description": f"Order for {USER_ID}"}

    result = process_ipn(payload, db_session)

    assert result['status'] == 'pending'
    assert result['plan_id'] is None
    profile = db_session.query(Profile).filter(Profile.id == USER_ID).one()
    assert profile.subscription_status == 'pending'
    assert profile.subscription_tier == 'ultimate'
    assert profile.trial_end_date is None


def test_process_ipn_uses_stored_record(db_session):
    add_profile(db_session)
    db_session.add(NowPaymentsRecord(payment_id='103', user_id=USER_ID, plan_id='standard', payment_status='waiting'))
    db_session.commit()
    payload = {"payment_id": 103, "payment_status": "failed", "actually_paid": 0.0001, "order_description": "opaque"}

    result = process_ipn(payload, db_session)

    assert result == {'status': 'inactive', 'user_id': USER_ID, 'plan_id': 'standard'}
    record = db_session.query(NowPaymentsRecord).filter(NowPaymentsRecord.payment_id == '103').one()
    assert record.payment_status == 'failed'
    assert record.actually_paid == 0.0001
    assert record.updated_at is not None


def test_process_ipn_free_trial_skips_provisioning(db_session):
    add_profile(db_session)
    megaott = FakeMegaOTT()
    db_session.add(NowPaymentsRecord(payment_id='104', user_id=USER_ID, plan_id='free-trial'))
    db_session.commit()

    process_ipn({"payment_id": 104, "payment_status": "finished"}, db_session,
                megaott=megaott, email_provider=RecordingEmailProvider())

    assert megaott.calls == 0


def test_process_ipn_free_trial_from_own_description(db_session):
    add_profile(db_session)
    megaott = FakeMegaOTT()
    description = build_order_description('Free Trial', USER_ID, 'free-trial', None)

    result = process_ipn({"payment_id": 109, "payment_status": "finished", "order_description": description},
                         db_session, megaott=megaott, email_provider=RecordingEmailProvider())

    assert result['plan_id'] == 'free-trial'
    assert megaott.calls == 0
    assert db_session.query(Profile).filter(Profile.id == USER_ID).one().subscription_tier == 'free-trial'


def test_extract_explicit_plan_token_wins_over_keywords():
    metadata = extract_order_metadata("SteadyStream TV - Standard upgrade | plan:premium")
    assert metadata.plan_id == 'premium'


def test_process_ipn_provisioning_failure_is_not_fatal(db_session, caplog):
    add_profile(db_session)
    provider = RecordingEmailProvider()
    payload = {"payment_id": 105, "payment_status": "finished", "order_description": f"{USER_ID} standard"}

    result = process_ipn(payload, db_session, megaott=FakeMegaOTT(fail=True), email_provider=provider)

    assert result['status'] == 'active'
    assert any("IPTV provisioning failed" in record.message for record in caplog.records)
    assert len(provider.sent) == 1


def test_process_ipn_closes_clients_it_builds(db_session, monkeypatch):
    monkeypatch.setenv('MEGAOTT_API_URL', 'https://megaott.example/api/v1')
    monkeypatch.setenv('MEGAOTT_API_KEY', 'mo_key')
    line = {'id': 56, 'username': 'LINE0002', 'password': 'pw', 'dns_link': 'http://dns.example'}
    megaott = MegaOTTClient('https://megaott.example/api/v1', 'mo_key',
                            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=line)))
    provider = ResendEmailProvider('re_key', transport=httpx.MockTransport(lambda request: httpx.Response(200, json={'id': 'em_1'})))
    monkeypatch.setattr(MegaOTTClient, 'from_env', classmethod(lambda cls, transport=None: megaott))
    monkeypatch.setattr('steadystream_svc.nowpayments_ipn.get_email_provider', lambda: provider)
    add_profile(db_session)

    process_ipn({"payment_id": 110, "payment_status": "finished", "order_description": f"user:{USER_ID} plan:standard"},
                db_session)

    assert db_session.query(Subscription).filter(Subscription.user_id == USER_ID).one().iptv_username == 'LINE0002'
    assert megaott._client.is_closed
    assert provider._client.is_closed


def test_process_ipn_already_active_does_not_reprovision(db_session):
    add_profile(db_session, subscription_status='active')
    megaott = FakeMegaOTT()
    provider = RecordingEmailProvider()

    process_ipn({"payment_id": 106, "payment_status": "finished", "order_description": f"{USER_ID} premium"},
                db_session, megaott=megaott, email_provider=provider)

    assert megaott.calls == 0
    assert provider.sent == []


def test_process_ipn_unknown_user(db_session):
    with pytest.raises(ValueError, match="Could not determine user"):
        process_ipn({"payment_id": 107, "payment_status": "finished", "order_description": "premium"}, db_session)


def test_process_ipn_missing_profile(db_session):
    with pytest.raises(ProfileNotFound):
        process_ipn({"payment_id": 108, "payment_status": "finished", "order_description": USER_ID}, db_session)


def post_ipn(client, payload, secret=SECRET, signature=None):
    body = json.dumps(payload)
    headers = {"Content-Type": "application/json"}
    if signature is not False:
        headers["x-nowpayments-sig"] = signature or ipn_signature(payload, secret)
    return client.post("/api/nowpayments/webhook", content=body, headers=headers)


def test_webhook_valid_signature(client, db_session, monkeypatch):
    monkeypatch.setenv('NOWPAYMENTS_IPN_SECRET', SECRET)
    add_profile(db_session)
    payload = {"payment_id": 201, "payment_status": "waiting", "order_description": f"user:{USER_ID} plan:ultimate"}

    response = post_ipn(client, payload)

    assert response.status_code == 200
    assert response.json() == {"success": True, "status": "pending"}
    db_session.expire_all()
    assert db_session.query(Profile).filter(Profile.id == USER_ID).one().subscription_tier == 'ultimate'


def test_webhook_tampered_body_is_rejected(client, db_session, monkeypatch, caplog):
    caplog.set_level(logging.INFO)
    monkeypatch.setenv('NOWPAYMENTS_IPN_SECRET', SECRET)
    add_profile(db_session, subscription_status='pending')
    original = {"payment_id": 202, "payment_status": "waiting", "order_description": f"user:{USER_ID}"}
    signature = ipn_signature(original, SECRET)
    tampered = dict(original, payment_status="finished")

    response = post_ipn(client, tampered, signature=signature)

    assert response.status_code == 401
    assert response.json()["error"] == "Invalid signature"
    db_session.expire_all()
    assert db_session.query(Profile).filter(Profile.id == USER_ID).one().subscription_status == 'pending'
    assert not any("NOWPayments IPN for payment" in record.message for record in caplog.records)


def test_webhook_missing_signature(client, monkeypatch):
    monkeypatch.setenv('NOWPAYMENTS_IPN_SECRET', SECRET)
    response = post_ipn(client, {"payment_id": 203}, signature=False)
    assert response.status_code == 401


def test_webhook_missing_secret(client, monkeypatch):
    monkeypatch.delenv('NOWPAYMENTS_IPN_SECRET', raising=False)
    response = post_ipn(client, {"payment_id": 204})
    assert response.status_code == 401


def test_webhook_unparsable_body(client, monkeypatch):
    monkeypatch.setenv('NOWPAYMENTS_IPN_SECRET', SECRET)
    response = client.post("/api/nowpayments/webhook", content=b"payment_id=1", headers={"x-nowpayments-sig": "abc"})
    assert response.status_code == 400


def test_webhook_unknown_profile(client, monkeypatch):
    monkeypatch.setenv('NOWPAYMENTS_IPN_SECRET', SECRET)
    response = post_ipn(client, {"payment_id": 205, "payment_status": "finished", "order_description": USER_ID})
    assert response.status_code == 404
