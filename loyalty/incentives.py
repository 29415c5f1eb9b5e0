# ==============================================================================
# loyalty/incentives.py
# ------------------------------------------------------------------------------
# Changes to incentive rules. Every changed value is written to the History
# table (old value, new value, field, actor) in the same transaction as the
# change itself, so a rule is never silently overwritten.
# ==============================================================================

import logging
from loyalty import db
from loyalty.models import (History, HistoryType, RewardStream, SegmentOverride, Actions,
                            OverrideTarget)

# Attribute name -> field title recorded in History
BASE_FIELD_TITLES = {
    'profit_margin': 'profitMargin',
    'base_allowance': 'baseIncentiveAllownace',
    'incentive_total': 'incentiveTotal',
}


class HistoryWriter:
    """Append-only sink for configuration changes."""

    def record(self, rule, field_title, old_value, new_value, actor, action_from_id=None):
        entry = History(field_title=field_title, old_value=old_value, new_value=new_value,
                        actor=actor, action_from_id=action_from_id,
                        history_type=HistoryType.INCENTIVE, incentive_rule_id=rule.id,
                        supplier_id=rule.supplier_id, vertical_id=rule.vertical_id,
                        product_type_id=rule.product_type_id, product_id=rule.product_id,
                        price_list=rule.price_list)
        db.session.add(entry)
        logging.info(f"History: rule {rule.id} {field_title} {old_value} -> {new_value} by {actor}")
        return entry


def _changed(old, new):
    if old is None or new is None:
        return old is not new
    return float(old) != float(new)


def _stream_for(rule, action, action_from_id):
    for stream in rule.reward_streams:
        if Actions(stream.action) == action and stream.action_from_id == action_from_id:
            return stream
    stream = RewardStream(action=action, wheel=None, wallet=None, action_from_id=action_from_id)
    rule.reward_streams.append(stream)
    return stream


def _override_for(rule, target_type, target_id):
    for override in rule.segmentation:
        if OverrideTarget(override.target_type or OverrideTarget.SEGMENT) == target_type \
                and override.target_id == target_id:
            return override
    return None


def update_incentive_rule(rule, actor, base=None, reward_streams=None, segmentation=None, writer=None):
    """
    Applies administrator changes to a rule and records one History entry per
    changed value. Commits.

    Args:
        rule (IncentiveRule): A persisted rule.
        actor (str): Who made the change.
        base (dict): {'profit_margin'|'base_allowance'|'incentive_total': value}
        reward_streams (dict): {(action, action_from_id): {'wheel': v, 'wallet': v}}
        segmentation (dict): {(target_type, target_id): value}; None removes the override.

    Returns:
        list: The History entries written.
    """
    writer = writer or HistoryWriter()
    written = []

    for attr, new_value in (base or {}).items():
        if attr not in BASE_FIELD_TITLES:
            raise ValueError(f"Unknown base incentive field: {attr}")
        old_value = getattr(rule, attr)
        if _changed(old_value, new_value):
            written.append(writer.record(rule, BASE_FIELD_TITLES[attr], old_value, new_value, actor))
            setattr(rule, attr, new_value)

    for (action, action_from_id), values in (reward_streams or {}).items():
        action = Actions(action)
        stream = _stream_for(rule, action, action_from_id)
        for column in ('wheel', 'wallet'):
            if column not in values:
                continue
            old_value, new_value = getattr(stream, column), values[column]
            if _changed(old_value, new_value):
                title = f"{action.value}{column.capitalize()}"
                written.append(writer.record(rule, title, old_value, new_value, actor, action_from_id))
                setattr(stream, column, new_value)

    for (target_type, target_id), new_value in (segmentation or {}).items():
        target_type = OverrideTarget(target_type)
        override = _override_for(rule, target_type, target_id)
        old_value = override.value if override is not None else None
        if not _changed(old_value, new_value):
            continue
        written.append(writer.record(rule, f"segmentation:{target_type.value}:{target_id}",
                                     old_value, new_value, actor))
        if new_value is None:
            rule.segmentation.remove(override)
        elif override is None:
            rule.segmentation.append(SegmentOverride(target_type=target_type, target_id=target_id,
                                                     value=new_value))
        else:
            override.value = new_value

    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logging.info(f"Incentive rule {rule.id} updated by {actor}: {len(written)} change(s) recorded.")
    return written
