# ==============================================================================
# loyalty/settlement/aggregator.py
# ------------------------------------------------------------------------------
# Turns a resolved incentive rule and a population into the breakdown for one
# distribution method. One handler per method; no database access.
# ==============================================================================

import logging
from loyalty.models import MethodType, OverrideTarget
from .breakdown import (EntityRef, BreakdownEntry, AllBreakdown, RegionBreakdown,
                        UserBreakdown, EntityBreakdown)
from .errors import UnsupportedMethod, DuplicateEntity, InvalidPopulation

OVERRIDE_TARGETS = {
    MethodType.GOVERNORATE: OverrideTarget.GOVERNORATE,
    MethodType.DISTRICT: OverrideTarget.DISTRICT,
    MethodType.SEGMENT: OverrideTarget.SEGMENT,
}


def rule_value(rule, action=None):
    """Base total of the rule plus the wallet value earned for `action`, if any."""
    value = rule.base_total
    if action is not None:
        value += rule.reward_wallet(action)
    return value


def coerce_method(method):
    try:
        return MethodType(method)
    except ValueError:
        raise UnsupportedMethod(method) from None


def _as_ref(member):
    if isinstance(member, EntityRef):
        return member
    if isinstance(member, dict):
        return EntityRef(member['id'], member.get('name'))
    if member is None:
        raise InvalidPopulation("Population contains an empty entity reference")
    return EntityRef(member)


# --- Handlers ---

def _aggregate_users(method, rule, population, action):
    link = population or None
    if link is None:
        logging.warning("USERS method: no user export link supplied; breakdown is incomplete.")
    return UserBreakdown(users_link=link, value=rule_value(rule, action), incomplete=link is None)


def _aggregate_all(method, rule, population, action):
    return AllBreakdown(value=rule_value(rule, action))


def _aggregate_region(method, rule, population, action):
    # Region granularity is vertical-wide: one value for everybody.
    return RegionBreakdown(value=rule_value(rule, action))


def _aggregate_entities(method, rule, population, action):
    refs = [_as_ref(member) for member in (population or [])]
    if not refs:
        logging.warning(f"{method.value} method: empty population, producing an empty breakdown.")
        return EntityBreakdown(method=method, entries=[])

    seen = set()
    for ref in refs:
        if ref.id in seen:
            raise DuplicateEntity(ref.id)
        seen.add(ref.id)

    base = rule_value(rule, action)
    target = OVERRIDE_TARGETS[method]
    entries = []
    for ref in refs:
        override = rule.override_for(target, ref.id)
        value = float(override) if override is not None else base
        logging.debug(f"  {method.value} {ref.id} ({ref.name}): "
                      f"{'override' if override is not None else 'base'} value {value:,.2f}")
        entries.append(BreakdownEntry(ref, value))
    return EntityBreakdown(method=method, entries=entries)


_HANDLERS = {
    MethodType.USERS: _aggregate_users,
    MethodType.APPLYALL: _aggregate_all,
    MethodType.REGION: _aggregate_region,
    MethodType.GOVERNORATE: _aggregate_entities,
    MethodType.DISTRICT: _aggregate_entities,
    MethodType.SEGMENT: _aggregate_entities,
}


def aggregate(method, rule, population=None, action=None):
    """
    Computes the breakdown for a distribution method.

    Args:
        method (MethodType | str): The distribution method.
        rule (IncentiveRule): The resolved incentive rule.
        population: The export link (USERS), an ordered list of entity ids or
            EntityRefs (GOVERNORATE/DISTRICT/SEGMENT), or nothing (APPLYALL/REGION).
        action (Actions, optional): Adds that action's reward-stream wallet value.

    Returns:
        One of AllBreakdown, RegionBreakdown, UserBreakdown, EntityBreakdown.
    """
    method = coerce_method(method)
    handler = _HANDLERS.get(method)
    if handler is None:
        raise UnsupportedMethod(method)
    return handler(method, rule, population, action)
