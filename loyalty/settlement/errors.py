# ==============================================================================
# loyalty/settlement/errors.py
# ------------------------------------------------------------------------------
# Exception taxonomy for incentive resolution and monthly settlement.
# Only the engine turns these into run-status changes.
# ==============================================================================


class SettlementError(Exception):
    """Base class for every error raised by the settlement package."""


class NotFound(SettlementError):
    """No incentive rule matches the requested scope. Callers pick the fallback."""

    def __init__(self, scope):
        self.scope = scope
        super().__init__(f"No incentive rule matches {scope}")


class AmbiguousConfiguration(SettlementError):
    """Two or more equally specific rules match with different payouts."""

    def __init__(self, scope, rule_ids):
        self.scope = scope
        self.rule_ids = list(rule_ids)
        super().__init__(
            f"Ambiguous incentive configuration for {scope}: rules {self.rule_ids} "
            f"are equally specific and pay out differently"
        )


class RunInProgress(SettlementError):
    """Another trigger owns (or just claimed) the run for this key."""


class UnsupportedMethod(SettlementError):
    def __init__(self, method):
        self.method = method
        super().__init__(f"Unsupported distribution method: {method!r}")


class InvalidPopulation(SettlementError):
    """The population handed to the aggregator is malformed."""


class DuplicateEntity(InvalidPopulation):
    def __init__(self, entity_id):
        self.entity_id = entity_id
        super().__init__(f"Entity {entity_id!r} appears more than once in the population")


class UpstreamUnavailable(SettlementError):
    """The user/population export service could not deliver."""


class InvalidTransition(SettlementError):
    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Settlement run cannot move from {current} to {target}")


class InvalidPeriod(SettlementError):
    pass


class SettlementCancelled(SettlementError):
    """Raised when a cancellation request is observed mid-run."""
