# tests/test_state.py

import pytest


@pytest.fixture
def pending_run(reference):
    from loyalty import db
    from loyalty.models import SettlementRun, MethodType, RunStatus

    run = SettlementRun(supplier_id=reference['supplier'].id, vertical_id=reference['vertical'].id,
                        user_type_id=reference['user_type'].id, method=MethodType.DISTRICT,
                        status=RunStatus.PENDING, month=3, year=2024, version=1,
                        period_key='test:3:2024')
    db.session.add(run)
    db.session.commit()
    return run


def _bump_lock_behind_orm(run_id):
    """Simulates another trigger updating the row after we loaded it."""
    from loyalty import db
    from loyalty.models import SettlementRun

    db.session.execute(db.update(SettlementRun)
                       .where(SettlementRun.id == run_id)
                       .values(lock_version=SettlementRun.lock_version + 1)
                       .execution_options(synchronize_session=False))
    db.session.commit()


def test_claim_moves_pending_to_processing(pending_run):
    from loyalty.models import RunStatus
    from loyalty.settlement import state

    state.claim(pending_run)

    assert pending_run.status == RunStatus.PROCESSING
    assert pending_run.lock_version == 2


def test_claim_loses_race_when_row_changed(pending_run):
    from loyalty.settlement import state
    from loyalty.settlement.errors import RunInProgress

    stale_lock = pending_run.lock_version
    _bump_lock_behind_orm(pending_run.id)

    with pytest.raises(RunInProgress):
        state.transition(pending_run, 'PROCESSING', expected_lock=stale_lock)


def test_second_claim_of_same_run_fails(pending_run):
    from loyalty.models import RunStatus
    from loyalty.settlement import state
    from loyalty.settlement.errors import RunInProgress

    state.claim(pending_run)

    # A second trigger that loaded the run while it was still PENDING
    with pytest.raises(RunInProgress):
        state.transition(pending_run, RunStatus.PROCESSING,
                         expected_status=RunStatus.PENDING, expected_lock=1)


def test_finished_run_cannot_move(pending_run):
    from loyalty import db
    from loyalty.models import RunStatus
    from loyalty.settlement import state
    from loyalty.settlement.errors import InvalidTransition

    state.claim(pending_run)
    state.transition(pending_run, RunStatus.FINISHED)
    db.session.commit()

    for target in (RunStatus.PENDING, RunStatus.PROCESSING, RunStatus.CANCELLED):
        with pytest.raises(InvalidTransition):
            state.transition(pending_run, target)


def test_pending_cannot_jump_to_finished(pending_run):
    from loyalty.models import RunStatus
    from loyalty.settlement import state
    from loyalty.settlement.errors import InvalidTransition

    with pytest.raises(InvalidTransition):
        state.transition(pending_run, RunStatus.FINISHED)


def test_transition_rejects_unknown_columns(pending_run):
    from loyalty.models import RunStatus
    from loyalty.settlement import state

    with pytest.raises(ValueError):
        state.transition(pending_run, RunStatus.PROCESSING, version=9)


def test_cancel_pending_run(pending_run):
    from loyalty.models import RunStatus
    from loyalty.settlement import state

    state.request_cancel(pending_run)

    assert pending_run.status == RunStatus.CANCELLED


def test_cancel_processing_run_only_sets_flag(pending_run):
    from loyalty.models import RunStatus
    from loyalty.settlement import state

    state.claim(pending_run)
    lock = pending_run.lock_version

    state.request_cancel(pending_run)

    assert pending_run.status == RunStatus.PROCESSING
    assert pending_run.cancel_requested is True
    assert pending_run.lock_version == lock
    assert state.cancel_requested(pending_run.id) is True


def test_mark_stalled_ignores_stale_lock(pending_run):
    from loyalty import db
    from loyalty.models import SettlementRun
    from loyalty.settlement import state

    state.claim(pending_run)
    current_lock = pending_run.lock_version

    assert state.mark_stalled(pending_run.id, current_lock - 1, 'late writer') is False
    assert state.mark_stalled(pending_run.id, current_lock, 'boom') is True

    db.session.expire_all()
    run = db.session.get(SettlementRun, pending_run.id)
    assert run.failure_reason == 'boom'
    assert run.is_stalled


def test_reclaim_clears_failure_and_bumps_lock(pending_run):
    from loyalty import db
    from loyalty.models import RunStatus
    from loyalty.settlement import state

    state.claim(pending_run)
    state.mark_stalled(pending_run.id, pending_run.lock_version, 'boom')
    db.session.refresh(pending_run)
    lock = pending_run.lock_version

    state.reclaim(pending_run)

    assert pending_run.status == RunStatus.PROCESSING
    assert pending_run.failure_reason is None
    assert pending_run.lock_version == lock + 1
