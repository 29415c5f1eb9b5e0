# ==============================================================================
# loyalty/settlement/engine.py
# ------------------------------------------------------------------------------
# End-of-month settlement orchestrator: resolves the incentive rule, claims the
# run, aggregates per distribution method, joins the user export into the
# ledger and finishes the run.
# ==============================================================================

import logging
from flask import current_app
from loyalty import db
from loyalty.models import (SettlementRun, MethodBreakdown, SettlementLog, SettlementLogEntry,
                            AppSetting, RunStatus, MethodType)
from sqlalchemy.exc import IntegrityError

from . import state
from .aggregator import aggregate, coerce_method
from .artifacts import LocalArtifactStore
from .breakdown import ENTITY_METHODS, apply_floor, to_record_fields
from .config_store import ConfigStore
from .errors import (SettlementError, RunInProgress, InvalidPeriod, UpstreamUnavailable,
                     SettlementCancelled, InvalidTransition)
from .log_builder import build_log_frame, log_rows
from .population import ReferenceData, FileUserExportSource
from .resolver import IncentiveResolver
from .scope import IncentiveScope

# --- Configuration Loader Class ---

class SettlementConfig:
    """
    A singleton class to load and hold the settlement business settings from
    the database. The database is queried only once per application lifecycle.
    """
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            logging.info("Creating and loading SettlementConfig instance...")
            cls._instance = super(SettlementConfig, cls).__new__(cls)
            try:
                cls._instance.load_settings()
                logging.info("SettlementConfig loaded successfully.")
            except Exception as e:
                cls._instance = None
                logging.error(f"FATAL: Could not load settings from database. Engine cannot run. Error: {e}", exc_info=True)
                raise
        return cls._instance

    def load_settings(self):
        """Loads all settings from the AppSetting table into attributes."""
        settings = AppSetting.query.all()
        settings_dict = {s.key: s.get_value() for s in settings}

        self.VALUE_ROUNDING_DIGITS = settings_dict.get('VALUE_ROUNDING_DIGITS', 2)
        self.APPLY_MINIMUM_INCENTIVE = settings_dict.get('APPLY_MINIMUM_INCENTIVE', True)
        self.PUBLISH_PREVIEW_REPORT = settings_dict.get('PUBLISH_PREVIEW_REPORT', False)
        self.EXPORT_FILE_EXTENSIONS = settings_dict.get('EXPORT_FILE_EXTENSIONS', ['.csv', '.xlsx'])


# --- Helper Functions ---

def _validate_period(month, year):
    if not isinstance(month, int) or not 1 <= month <= 12:
        raise InvalidPeriod(f"Month must be between 1 and 12, got {month!r}")
    if not isinstance(year, int) or year < 2000:
        raise InvalidPeriod(f"Year must be 2000 or later, got {year!r}")


def period_key(scope, method, month, year):
    user_type = scope.user_type_id if scope.user_type_id is not None else '*'
    return f"{scope.supplier_id}:{scope.vertical_id}:{user_type}:{MethodType(method).value}:{year}-{month:02d}"


def latest_run(scope, method, month, year):
    """The highest version recorded for a settlement key, or None."""
    return (SettlementRun.query
            .filter_by(period_key=period_key(scope, method, month, year))
            .order_by(SettlementRun.version.desc())
            .first())


def scope_for_run(run):
    return IncentiveScope(vertical_id=run.vertical_id, supplier_id=run.supplier_id,
                          user_type_id=run.user_type_id, product_type_id=run.product_type_id,
                          product_id=run.product_id, action=run.action)


# --- Main Settlement Orchestrator ---

class SettlementEngine:
    """
    Stateless per call; every collaborator can be swapped out. The engine is
    the only layer that changes a run's status.
    """

    def __init__(self, store=None, resolver=None, users=None, references=None, artifacts=None, config=None):
        self.store = store or ConfigStore()
        self.resolver = resolver or IncentiveResolver(self.store)
        self.references = references or ReferenceData()
        self.config = config or SettlementConfig()
        self.users = users or FileUserExportSource(current_app.config['SETTLEMENT_EXPORT_FOLDER'],
                                                   self.config.EXPORT_FILE_EXTENSIONS)
        if artifacts is None and self.config.PUBLISH_PREVIEW_REPORT:
            artifacts = LocalArtifactStore(current_app.config['SETTLEMENT_REPORT_FOLDER'])
        self.artifacts = artifacts

    # --- Entry points ---

    def run_settlement(self, scope, method, month, year, population=None):
        """
        Settles one period for a scope.

        Args:
            scope (IncentiveScope): Supplier, vertical, optional user type /
                product type / product / action.
            method (MethodType | str): Distribution method.
            month (int), year (int): The settled period.
            population (list, optional): Explicit ordered entity ids for
                GOVERNORATE/DISTRICT/SEGMENT. Defaults to the reference data.

        Returns:
            SettlementRun: The run, FINISHED (possibly with is_missing=True).

        Raises:
            NotFound, AmbiguousConfiguration: No run is created. Resolution
                happens before the in-flight check, so these take precedence
                over RunInProgress when the key is also still processing.
            RunInProgress: Another trigger owns this key.
            SettlementError: Any later failure; the run stays PROCESSING with
                a failure reason.
        """
        method = coerce_method(method)
        _validate_period(month, year)

        logging.info("=" * 80)
        logging.info(f"SETTLEMENT {year}-{month:02d} | {method.value} | {scope}")
        logging.info("=" * 80)

        # Resolution is a pure read; a configuration problem must not leave a run behind.
        rule = self.resolver.resolve(scope)

        run = self._open_run(scope, method, month, year)
        state.claim(run)
        return self._drive(run, rule, scope, population)

    def recover_run(self, run_id, population=None, force=False):
        """
        Explicitly re-drives a stalled run. Only runs with a recorded failure
        reason are eligible unless `force` is set (e.g. a worker died without
        recording anything).
        """
        run = db.session.get(SettlementRun, run_id)
        if run is None:
            raise SettlementError(f"Settlement run {run_id} does not exist")
        if run.status != RunStatus.PROCESSING:
            raise InvalidTransition(RunStatus(run.status).value, RunStatus.PROCESSING.value)
        if run.failure_reason is None and not force:
            raise RunInProgress(f"Settlement run {run_id} is processing and has not stalled")

        logging.info(f"Recovering run {run.id} (previous failure: {run.failure_reason}).")
        state.reclaim(run)

        scope = scope_for_run(run)
        try:
            rule = self.resolver.resolve(scope)
        except SettlementError as e:
            self._stall(run.id, run.lock_version, e)
            raise
        return self._drive(run, rule, scope, population)

    def cancel_run(self, run_id):
        run = db.session.get(SettlementRun, run_id)
        if run is None:
            raise SettlementError(f"Settlement run {run_id} does not exist")
        return state.request_cancel(run)

    # --- Steps ---

    def _open_run(self, scope, method, month, year):
        previous = latest_run(scope, method, month, year)
        if previous is not None:
            status = RunStatus(previous.status)
            if status == RunStatus.PROCESSING:
                raise RunInProgress(f"Run {previous.id} for this period is already processing")
            if status == RunStatus.PENDING:
                logging.info(f"Reusing pending run {previous.id} (v{previous.version}).")
                return previous

        version = previous.version + 1 if previous is not None else 1
        user_type_name = None
        if scope.user_type_id is not None:
            user_type_name = self.references.lookup('user_type', scope.user_type_id).name

        run = SettlementRun(supplier_id=scope.supplier_id, vertical_id=scope.vertical_id,
                            user_type_id=scope.user_type_id, user_type_name=user_type_name,
                            product_type_id=scope.product_type_id, product_id=scope.product_id,
                            action=scope.action,
                            method=method, status=RunStatus.PENDING,
                            month=month, year=year, version=version,
                            period_key=period_key(scope, method, month, year))
        db.session.add(run)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise RunInProgress(f"Version {version} of this period was created by another trigger") from None
        logging.info(f"Created settlement run {run.id} (v{version}).")
        return run

    def _population(self, run, method, population):
        if method == MethodType.USERS:
            try:
                return self.users.export_link(run)
            except UpstreamUnavailable as e:
                logging.warning(f"Run {run.id}: user export service unavailable: {e}")
                return None
        if method in ENTITY_METHODS:
            if population is not None:
                return self.references.resolve_population(method, population)
            return self.references.entities(method, run.supplier_id, run.vertical_id)
        return None

    def _minimum(self, run):
        if not self.config.APPLY_MINIMUM_INCENTIVE:
            return None
        record = self.store.minimum_incentive(run.user_type_id, run.supplier_id, run.vertical_id)
        if record is None or not record.activate_wallet:
            return None
        return record.minimum_incentive

    def _load_users(self, run, breakdown):
        """Returns (users frame or None, is_missing)."""
        if breakdown.incomplete:
            return None, True
        link = breakdown.users_link if run.method == MethodType.USERS else None
        try:
            if link is None:
                link = self.users.export_link(run)
            if link is None:
                raise UpstreamUnavailable(f"No user export for run {run.id}")
            return self.users.load_users(link, run.method), False
        except UpstreamUnavailable as e:
            logging.warning(f"Run {run.id}: finishing without a user ledger, export missing: {e}")
            return None, True

    def _drive(self, run, rule, scope, population):
        run_id, method, lock = run.id, MethodType(run.method), run.lock_version
        try:
            members = self._population(run, method, population)
            breakdown = aggregate(method, rule, members, scope.action)
            breakdown = apply_floor(breakdown, self._minimum(run))

            if state.cancel_requested(run_id):
                raise SettlementCancelled(f"Run {run_id} was cancelled during processing")

            users, is_missing = self._load_users(run, breakdown)
            frame = build_log_frame(breakdown, users, self.config.VALUE_ROUNDING_DIGITS)

            preview_link = self._publish(run, frame)
            self._persist(run, breakdown, frame)
            state.transition(run, RunStatus.FINISHED, expected_status=RunStatus.PROCESSING,
                             expected_lock=lock, is_missing=is_missing,
                             preview_link=preview_link, failure_reason=None)
            db.session.commit()
        except Exception as e:
            self._stall(run_id, lock, e)
            raise

        logging.info(f"Run {run_id} FINISHED (v{run.version}, missing={run.is_missing}, "
                     f"{len(frame)} ledger row(s)).")
        return run

    def _publish(self, run, frame):
        if self.artifacts is None or frame.empty:
            return None
        try:
            return self.artifacts.publish(run, frame)
        except Exception as e:
            # The report is a convenience copy of the ledger; settle without it.
            logging.warning(f"Run {run.id}: report could not be published: {e}", exc_info=True)
            return None

    def _persist(self, run, breakdown, frame):
        db.session.add(MethodBreakdown(settlement_run_id=run.id, **to_record_fields(breakdown)))
        log = SettlementLog(settlement_run_id=run.id, vertical_id=run.vertical_id, supplier_id=run.supplier_id)
        log.users = [SettlementLogEntry(**row) for row in log_rows(frame)]
        db.session.add(log)
        db.session.flush()

    def _stall(self, run_id, lock, error):
        """Leaves the run PROCESSING with the failure recorded."""
        db.session.rollback()
        reason = f"{type(error).__name__}: {error}"
        logging.error(f"Run {run_id} stalled in PROCESSING: {reason}", exc_info=True)
        if not state.mark_stalled(run_id, lock, reason):
            logging.warning(f"Run {run_id}: failure reason not recorded, run was taken over.")
