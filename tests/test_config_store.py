# tests/test_config_store.py

from loyalty import db
from loyalty.models import MinimumIncentive, HoldIncentive, HoldIncentiveProductType, Actions
from loyalty.settlement.config_store import ConfigStore


def _minimum(user_type_id, value, supplier_id=None, vertical_id=None):
    record = MinimumIncentive(user_type_id=user_type_id, supplier_id=supplier_id, vertical_id=vertical_id,
                              minimum_incentive=value, activate_wallet=True)
    db.session.add(record)
    db.session.commit()
    return record


def test_minimum_incentive_prefers_supplier_and_vertical(reference):
    ut, s, v = reference['user_type'].id, reference['supplier'].id, reference['vertical'].id
    _minimum(ut, 5)
    _minimum(ut, 10, vertical_id=v)
    _minimum(ut, 20, supplier_id=s)
    _minimum(ut, 30, supplier_id=s, vertical_id=v)

    assert ConfigStore().minimum_incentive(ut, s, v).minimum_incentive == 30


def test_minimum_incentive_falls_back_supplier_then_vertical_then_user_type(reference):
    ut, s, v = reference['user_type'].id, reference['supplier'].id, reference['vertical'].id
    store = ConfigStore()

    _minimum(ut, 5)
    assert store.minimum_incentive(ut, s, v).minimum_incentive == 5

    _minimum(ut, 10, vertical_id=v)
    assert store.minimum_incentive(ut, s, v).minimum_incentive == 10

    _minimum(ut, 20, supplier_id=s)
    assert store.minimum_incentive(ut, s, v).minimum_incentive == 20


def test_minimum_incentive_for_other_scope_is_not_used(reference):
    ut, s, v = reference['user_type'].id, reference['supplier'].id, reference['vertical'].id
    _minimum(ut, 50, supplier_id=s + 1, vertical_id=v)

    assert ConfigStore().minimum_incentive(ut, s, v) is None
    assert ConfigStore().minimum_incentive(None, s, v) is None


def _hold(reference, durations, action=None, is_deleted=False):
    hold = HoldIncentive(user_type_id=reference['user_type'].id, supplier_id=reference['supplier'].id,
                         action=action, is_deleted=is_deleted)
    for product_type_id, duration, enabled in durations:
        hold.product_types.append(HoldIncentiveProductType(product_type_id=product_type_id,
                                                           duration=duration, is_enabled=enabled))
    db.session.add(hold)
    db.session.commit()
    return hold


def test_hold_duration_defaults_to_zero(reference):
    store = ConfigStore()

    assert store.hold_duration(reference['supplier'].id, reference['user_type'].id,
                               reference['product_type'].id) == 0


def test_hold_duration_action_specific_record_wins(reference):
    pt = reference['product_type'].id
    _hold(reference, [(pt, 14, True)])
    _hold(reference, [(pt, 30, True)], action=Actions.PURCHASE)
    store = ConfigStore()
    s, ut = reference['supplier'].id, reference['user_type'].id

    assert store.hold_duration(s, ut, pt, Actions.PURCHASE) == 30
    assert store.hold_duration(s, ut, pt, 'SELLS') == 14
    assert store.hold_duration(s, ut, pt) == 14


def test_hold_duration_ignores_deleted_and_disabled(reference):
    pt = reference['product_type'].id
    _hold(reference, [(pt, 60, True)], is_deleted=True)
    _hold(reference, [(pt, 45, False)])
    store = ConfigStore()

    assert store.hold_duration(reference['supplier'].id, reference['user_type'].id, pt) == 0
