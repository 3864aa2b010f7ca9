from __future__ import annotations

import pytest

from tradedesk.data import settings_repository

OWNER = "owner-1"


def test_defaults_apply_without_rows():
    settings = settings_repository.get_app_settings(OWNER)

    assert settings.business_name == "TradeDesk"
    assert settings.payment_terms_days == 30
    assert settings.overpayment_policy == "accept"
    assert settings.notifications_enabled
    assert settings.currency == "INR"


def test_owner_value_wins_over_global():
    settings_repository.update_settings({"business_name": "Global Co", "payment_terms_days": 15})
    settings_repository.set_setting("business_name", "Rao Traders", OWNER)

    mine = settings_repository.get_app_settings(OWNER)
    theirs = settings_repository.get_app_settings("owner-2")

    assert mine.business_name == "Rao Traders"
    assert mine.payment_terms_days == 15
    assert theirs.business_name == "Global Co"


def test_boolean_settings_are_stored_as_flags():
    settings_repository.update_settings({"notifications_enabled": False}, OWNER)

    assert settings_repository.get_setting("notifications_enabled", OWNER) == "0"
    assert not settings_repository.get_app_settings(OWNER).notifications_enabled


def test_unknown_overpayment_policy_is_refused():
    with pytest.raises(ValueError):
        settings_repository.update_settings({"overpayment_policy": "refund"}, OWNER)

    assert settings_repository.get_app_settings(OWNER).overpayment_policy == "accept"


def test_garbage_terms_fall_back_to_default():
    settings_repository.set_setting("payment_terms_days", "soon", OWNER)

    assert settings_repository.get_app_settings(OWNER).payment_terms_days == 30
