# ==============================================================================
# loyalty/settlement/resolver.py
# ------------------------------------------------------------------------------
# Picks the single incentive rule that applies to a request out of the many
# overlapping scopes (vertical x supplier x user type x product type x product).
# ==============================================================================

import logging
from loyalty.models import IncentiveRule
from .config_store import ConfigStore
from .errors import NotFound, AmbiguousConfiguration


def matches(rule, scope):
    """True when every non-null scope column of the rule equals the request."""
    requested = scope.match_fields()
    for name in IncentiveRule.SCOPE_FIELDS:
        value = getattr(rule, name)
        if value is not None and value != requested[name]:
            return False
    return True


def specificity(rule):
    """
    Sort key for a matching rule, highest wins:
    number of non-null scope fields, then product-scoped, then supplier-scoped.
    """
    score = sum(1 for name in IncentiveRule.SCOPE_FIELDS if getattr(rule, name) is not None)
    return (score, rule.product_id is not None, rule.supplier_id is not None)


def rank_candidates(scope, rules):
    """
    Ranks the candidate rules for a scope and returns the winner.

    Args:
        scope (IncentiveScope): The request context.
        rules (list): Candidate IncentiveRule objects, in any order.

    Returns:
        IncentiveRule: The single most specific matching rule.

    Raises:
        NotFound: No rule matches the scope.
        AmbiguousConfiguration: The most specific rules disagree on the payout.
    """
    matching = [rule for rule in rules if matches(rule, scope)]
    if not matching:
        raise NotFound(scope)

    best = max(specificity(rule) for rule in matching)
    top = sorted((rule for rule in matching if specificity(rule) == best),
                 key=lambda rule: (rule.id is None, rule.id or 0))

    if len(top) > 1:
        signatures = {rule.payout_signature() for rule in top}
        if len(signatures) > 1:
            raise AmbiguousConfiguration(scope, [rule.id for rule in top])
        logging.warning(f"Resolver: {len(top)} identical rules tie for {scope}; using rule {top[0].id}.")

    return top[0]


class IncentiveResolver:
    """Resolves a scope against the configuration store. Pure read."""

    def __init__(self, store=None):
        self.store = store or ConfigStore()

    def resolve(self, scope):
        rule = rank_candidates(scope, self.store.incentive_candidates(scope))
        logging.info(f"Resolved {scope} to incentive rule {rule.id} (base total {rule.base_total:,.2f}).")
        return rule
