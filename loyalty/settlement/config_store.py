# ==============================================================================
# loyalty/settlement/config_store.py
# ------------------------------------------------------------------------------
# Read-only view over incentive, minimum-incentive and hold-incentive
# configuration. Lookups fall back from the fully specified key to partial
# keys; picking the single winner among incentive rules is the resolver's job.
# ==============================================================================

import logging
from loyalty import db
from loyalty.models import (IncentiveRule, MinimumIncentive, HoldIncentive, Actions)


def _wildcard_match(column, value):
    """A rule column matches when it is NULL or equal to the requested value."""
    if value is None:
        return column.is_(None)
    return db.or_(column.is_(None), column == value)


class ConfigStore:
    """Queries configuration tables; never writes."""

    def incentive_candidates(self, scope):
        """
        Returns every incentive rule whose non-null scope columns agree with
        the request, ordered by id. A rule scoped to a product type only
        matches requests that name that product type.
        """
        fields = scope.match_fields()
        query = IncentiveRule.query
        for name in IncentiveRule.SCOPE_FIELDS:
            query = query.filter(_wildcard_match(getattr(IncentiveRule, name), fields[name]))
        candidates = query.order_by(IncentiveRule.id).all()
        logging.debug(f"ConfigStore: {len(candidates)} incentive candidate(s) for {scope}")
        return candidates

    def minimum_incentive(self, user_type_id, supplier_id=None, vertical_id=None):
        """
        Finds the minimum-incentive record for a user type, trying
        (supplier, vertical), then supplier only, then vertical only, then the
        user type alone. Returns None when nothing is configured.
        """
        if user_type_id is None:
            return None

        fallbacks = [
            (supplier_id, vertical_id),
            (supplier_id, None),
            (None, vertical_id),
            (None, None),
        ]
        seen = set()
        for supplier, vertical in fallbacks:
            if (supplier, vertical) in seen:
                continue
            seen.add((supplier, vertical))
            record = (MinimumIncentive.query
                      .filter(MinimumIncentive.user_type_id == user_type_id)
                      .filter(_exact(MinimumIncentive.supplier_id, supplier))
                      .filter(_exact(MinimumIncentive.vertical_id, vertical))
                      .order_by(MinimumIncentive.id)
                      .first())
            if record is not None:
                return record
        return None

    def hold_duration(self, supplier_id, user_type_id, product_type_id, action=None):
        """
        Number of days an incentive of this product type is held before it is
        transferred. The action-specific record wins over the action-less one;
        deleted records and disabled product types are ignored. Returns 0 when
        nothing is configured.
        """
        actions = [None] if action is None else [Actions(action), None]
        for candidate_action in actions:
            records = (HoldIncentive.query
                       .filter_by(supplier_id=supplier_id, user_type_id=user_type_id, is_deleted=False)
                       .filter(_exact(HoldIncentive.action, candidate_action))
                       .order_by(HoldIncentive.id)
                       .all())
            for record in records:
                for entry in record.product_types:
                    if entry.product_type_id == product_type_id and entry.is_enabled:
                        return entry.duration or 0
        return 0


def _exact(column, value):
    if value is None:
        return column.is_(None)
    return column == value
