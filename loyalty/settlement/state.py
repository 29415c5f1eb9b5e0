# ==============================================================================
# loyalty/settlement/state.py
# ------------------------------------------------------------------------------
# Settlement run status machine. Every transition is one conditional UPDATE
# keyed on (id, status, lock_version); if no row is affected another trigger
# got there first.
# ==============================================================================

import logging
from datetime import datetime
from loyalty import db
from loyalty.models import SettlementRun, RunStatus
from .errors import InvalidTransition, RunInProgress

ALLOWED_TRANSITIONS = {
    RunStatus.PENDING: {RunStatus.PROCESSING, RunStatus.CANCELLED},
    # PROCESSING -> PROCESSING is an explicit operator re-drive of a stalled run
    RunStatus.PROCESSING: {RunStatus.PROCESSING, RunStatus.FINISHED},
    RunStatus.FINISHED: set(),
    RunStatus.CANCELLED: set(),
}

# Columns a transition may set alongside the status
_WRITABLE = {'is_missing', 'preview_link', 'failure_reason', 'cancel_requested'}


def can_transition(current, target):
    return RunStatus(target) in ALLOWED_TRANSITIONS[RunStatus(current)]


def transition(run, target, expected_status=None, expected_lock=None, **changes):
    """
    Moves `run` to `target` if, and only if, the stored record still has the
    status and lock_version this caller last saw. Does not commit.

    Args:
        run (SettlementRun): The run as last loaded by the caller.
        target (RunStatus): Desired status.
        expected_status (RunStatus, optional): Defaults to run.status.
        expected_lock (int, optional): Defaults to run.lock_version.
        **changes: Extra columns to write in the same statement.

    Raises:
        InvalidTransition: The move is not in ALLOWED_TRANSITIONS.
        RunInProgress: The record changed under us.
    """
    target = RunStatus(target)
    current = RunStatus(expected_status if expected_status is not None else run.status)
    lock = expected_lock if expected_lock is not None else run.lock_version

    if not can_transition(current, target):
        raise InvalidTransition(current.value, target.value)

    unknown = set(changes) - _WRITABLE
    if unknown:
        raise ValueError(f"transition() cannot write columns: {sorted(unknown)}")

    values = dict(changes)
    values.update(status=target, lock_version=lock + 1, updated_at=datetime.utcnow())

    stmt = (db.update(SettlementRun)
            .where(SettlementRun.id == run.id,
                   SettlementRun.status == current,
                   SettlementRun.lock_version == lock)
            .values(**values)
            .execution_options(synchronize_session=False))
    result = db.session.execute(stmt)

    if result.rowcount != 1:
        logging.warning(f"Run {run.id}: lost the race moving {current.value} -> {target.value} "
                        f"(expected lock_version {lock}).")
        raise RunInProgress(f"Settlement run {run.id} was modified concurrently")

    db.session.refresh(run)
    logging.info(f"Run {run.id}: {current.value} -> {target.value} (lock_version {run.lock_version}).")
    return run


def claim(run):
    """PENDING -> PROCESSING, committed immediately so other triggers see it."""
    try:
        transition(run, RunStatus.PROCESSING, expected_status=RunStatus.PENDING)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return run


def reclaim(run):
    """
    Re-drives a stalled PROCESSING run. Clears the failure reason and any
    pending cancellation request, bumping lock_version so a late writer from
    the previous attempt cannot finish the run.
    """
    try:
        transition(run, RunStatus.PROCESSING, expected_status=RunStatus.PROCESSING,
                   failure_reason=None, cancel_requested=False)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return run


def mark_stalled(run_id, lock_version, reason):
    """
    Records why a PROCESSING run stopped. The status stays PROCESSING. Does
    nothing if the run has moved on since (another attempt owns it).
    """
    stmt = (db.update(SettlementRun)
            .where(SettlementRun.id == run_id,
                   SettlementRun.status == RunStatus.PROCESSING,
                   SettlementRun.lock_version == lock_version)
            .values(failure_reason=reason, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False))
    result = db.session.execute(stmt)
    db.session.commit()
    return result.rowcount == 1


def request_cancel(run):
    """
    Cancels a PENDING run outright; flags a PROCESSING run so the engine stops
    at its next checkpoint. Commits.
    """
    status = RunStatus(run.status)
    try:
        if status == RunStatus.PENDING:
            transition(run, RunStatus.CANCELLED)
        elif status == RunStatus.PROCESSING:
            stmt = (db.update(SettlementRun)
                    .where(SettlementRun.id == run.id,
                           SettlementRun.status == RunStatus.PROCESSING)
                    .values(cancel_requested=True, updated_at=datetime.utcnow())
                    .execution_options(synchronize_session=False))
            if db.session.execute(stmt).rowcount != 1:
                raise RunInProgress(f"Settlement run {run.id} was modified concurrently")
            db.session.refresh(run)
            logging.info(f"Run {run.id}: cancellation requested while PROCESSING.")
        else:
            raise InvalidTransition(status.value, RunStatus.CANCELLED.value)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return run


def cancel_requested(run_id):
    """Reads the cancellation flag straight from the database."""
    stmt = db.select(SettlementRun.cancel_requested).where(SettlementRun.id == run_id)
    return bool(db.session.execute(stmt).scalar())
