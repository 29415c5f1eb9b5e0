# ==============================================================================
# loyalty/settlement/__init__.py
# ------------------------------------------------------------------------------
# Monthly settlement: incentive resolution, per-method aggregation, the run
# state machine and the orchestrating engine.
# ==============================================================================
