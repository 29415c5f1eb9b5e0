# ==============================================================================
# loyalty/models.py
# ------------------------------------------------------------------------------
# Defines the database schema using SQLAlchemy ORM models: reference data,
# incentive configuration, audit history and the monthly settlement records.
# ==============================================================================

import enum
import json
from datetime import datetime
from loyalty import db


# --- Enumerations ---

class Actions(str, enum.Enum):
    PURCHASE = 'PURCHASE'
    SELLS = 'SELLS'
    USE = 'USE'
    REWARD = 'REWARD'


class WalletType(str, enum.Enum):
    POINTS = 'POINTS'
    CASH = 'CASH'


class MethodType(str, enum.Enum):
    USERS = 'USERS'
    REGION = 'REGION'
    GOVERNORATE = 'GOVERNORATE'
    DISTRICT = 'DISTRICT'
    SEGMENT = 'SEGMENT'
    APPLYALL = 'APPLYALL'


class RunStatus(str, enum.Enum):
    PENDING = 'PENDING'
    PROCESSING = 'PROCESSING'
    FINISHED = 'FINISHED'
    CANCELLED = 'CANCELLED'


class OverrideTarget(str, enum.Enum):
    """The kind of entity a segmentation override is keyed on."""
    SEGMENT = 'SEGMENT'
    DISTRICT = 'DISTRICT'
    GOVERNORATE = 'GOVERNORATE'


class HistoryType(str, enum.Enum):
    INCENTIVE = 'INCENTIVE'
    PRICELIST = 'PRICELIST'


# --- Reference Data ---
# Owned by the reference-data service; the settlement core only reads these.

class Supplier(db.Model):
    __tablename__ = 'supplier'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<Supplier {self.id}: {self.name}>'


class Vertical(db.Model):
    __tablename__ = 'vertical'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<Vertical {self.id}: {self.name}>'


class UserType(db.Model):
    __tablename__ = 'user_type'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    vertical_id = db.Column(db.Integer, db.ForeignKey('vertical.id'), nullable=True)
    is_default = db.Column(db.Boolean, default=False)

    def __repr__(self):
        return f'<UserType {self.id}: {self.name}>'


class ProductType(db.Model):
    __tablename__ = 'product_type'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)

    def __repr__(self):
        return f'<ProductType {self.id}: {self.name}>'


class Product(db.Model):
    __tablename__ = 'product'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    product_type_id = db.Column(db.Integer, db.ForeignKey('product_type.id'), nullable=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey('supplier.id'), nullable=True)

    def __repr__(self):
        return f'<Product {self.id}: {self.name}>'


class Region(db.Model):
    __tablename__ = 'region'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)


class Governorate(db.Model):
    __tablename__ = 'governorate'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    country = db.Column(db.String(64))

    districts = db.relationship('District', backref='governorate', lazy='dynamic')

    def __repr__(self):
        return f'<Governorate {self.id}: {self.name}>'


class District(db.Model):
    __tablename__ = 'district'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    governorate_id = db.Column(db.Integer, db.ForeignKey('governorate.id'), nullable=False)

    def __repr__(self):
        return f'<District {self.id}: {self.name}>'


class Segment(db.Model):
    __tablename__ = 'segment'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    supplier_id = db.Column(db.Integer, db.ForeignKey('supplier.id'), nullable=True)
    vertical_id = db.Column(db.Integer, db.ForeignKey('vertical.id'), nullable=True)

    def __repr__(self):
        return f'<Segment {self.id}: {self.name}>'


# --- Incentive Configuration ---

class IncentiveRule(db.Model):
    """
    One incentive configuration. Null scope columns act as wildcards when the
    resolver matches a request. Managed by administrators; every change goes
    through the history writer so the audit trail is preserved.
    """
    __tablename__ = 'incentive_rule'
    id = db.Column(db.Integer, primary_key=True)

    # Scope
    vertical_id = db.Column(db.Integer, db.ForeignKey('vertical.id'), nullable=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey('supplier.id'), nullable=True)
    user_type_id = db.Column(db.Integer, db.ForeignKey('user_type.id'), nullable=True)
    product_type_id = db.Column(db.Integer, db.ForeignKey('product_type.id'), nullable=True)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id'), nullable=True)

    # Base incentive block
    profit_margin = db.Column(db.Float, nullable=True)
    base_allowance = db.Column(db.Float, nullable=True)
    incentive_total = db.Column(db.Float, nullable=True)

    price_list = db.Column(db.String(64), nullable=True)
    wallet_type = db.Column(db.Enum(WalletType, native_enum=False), default=WalletType.CASH)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    reward_streams = db.relationship('RewardStream', backref='incentive_rule',
                                     cascade="all, delete-orphan", order_by='RewardStream.id')
    segmentation = db.relationship('SegmentOverride', backref='incentive_rule',
                                   cascade="all, delete-orphan", order_by='SegmentOverride.id')

    __table_args__ = (
        db.UniqueConstraint('vertical_id', 'supplier_id', 'user_type_id', 'product_type_id', 'product_id',
                            name='_incentive_scope_uc'),
        db.Index('ix_incentive_scope', 'vertical_id', 'supplier_id', 'user_type_id', 'product_type_id'),
    )

    SCOPE_FIELDS = ('vertical_id', 'supplier_id', 'user_type_id', 'product_type_id', 'product_id')

    def __repr__(self):
        return (f'<IncentiveRule {self.id}: V={self.vertical_id} S={self.supplier_id} '
                f'UT={self.user_type_id} PT={self.product_type_id} P={self.product_id}>')

    @property
    def base_total(self):
        """The incentive total, or margin + allowance when no total is configured."""
        if self.incentive_total is not None:
            return float(self.incentive_total)
        return float(self.profit_margin or 0) + float(self.base_allowance or 0)

    def reward_wallet(self, action):
        """Sums the wallet value of every reward stream for the given action."""
        action = Actions(action)
        return sum(float(s.wallet or 0) for s in self.reward_streams if s.action == action)

    def override_for(self, target_type, target_id):
        for override in self.segmentation:
            kind = override.target_type or OverrideTarget.SEGMENT
            if kind == target_type and override.target_id == target_id:
                return override.value
        return None

    def payout_signature(self):
        """
        A comparable description of everything this rule pays out. Two rules
        with the same signature are interchangeable for settlement purposes.
        """
        streams = sorted(
            (Actions(s.action).value if s.action else '', s.wheel or 0, s.wallet or 0, s.action_from_id or 0)
            for s in self.reward_streams
        )
        overrides = sorted(
            (OverrideTarget(o.target_type or OverrideTarget.SEGMENT).value, o.target_id, o.value or 0) for o in self.segmentation
        )
        return (self.base_total, tuple(streams), tuple(overrides))


class RewardStream(db.Model):
    __tablename__ = 'reward_stream'
    id = db.Column(db.Integer, primary_key=True)
    incentive_rule_id = db.Column(db.Integer, db.ForeignKey('incentive_rule.id'), nullable=False)
    action = db.Column(db.Enum(Actions, native_enum=False), nullable=False)
    wheel = db.Column(db.Float, default=0)
    wallet = db.Column(db.Float, default=0)
    # The user type the action originates from, e.g. a retailer selling to a consumer
    action_from_id = db.Column(db.Integer, db.ForeignKey('user_type.id'), nullable=True)

    def __repr__(self):
        return f'<RewardStream {self.action}: wheel={self.wheel} wallet={self.wallet}>'


class SegmentOverride(db.Model):
    __tablename__ = 'segment_override'
    id = db.Column(db.Integer, primary_key=True)
    incentive_rule_id = db.Column(db.Integer, db.ForeignKey('incentive_rule.id'), nullable=False)
    target_type = db.Column(db.Enum(OverrideTarget, native_enum=False), nullable=False,
                            default=OverrideTarget.SEGMENT)
    target_id = db.Column(db.Integer, nullable=False)
    value = db.Column(db.Float, nullable=False)

    def __repr__(self):
        return f'<SegmentOverride {self.target_type}:{self.target_id} = {self.value}>'


class MinimumIncentive(db.Model):
    """Minimum per-unit payout for a user type, optionally narrowed by supplier/vertical."""
    __tablename__ = 'minimum_incentive'
    id = db.Column(db.Integer, primary_key=True)
    user_type_id = db.Column(db.Integer, db.ForeignKey('user_type.id'), nullable=False)
    supplier_id = db.Column(db.Integer, db.ForeignKey('supplier.id'), nullable=True)
    vertical_id = db.Column(db.Integer, db.ForeignKey('vertical.id'), nullable=True)
    minimum_incentive = db.Column(db.Float, default=0)
    activate_wallet = db.Column(db.Boolean, default=False)

    def __repr__(self):
        return f'<MinimumIncentive UT={self.user_type_id}: {self.minimum_incentive}>'


class HoldIncentive(db.Model):
    """How long incentives are held before transfer, per product type."""
    __tablename__ = 'hold_incentive'
    id = db.Column(db.Integer, primary_key=True)
    user_type_id = db.Column(db.Integer, db.ForeignKey('user_type.id'), nullable=False)
    supplier_id = db.Column(db.Integer, db.ForeignKey('supplier.id'), nullable=False)
    action = db.Column(db.Enum(Actions, native_enum=False), nullable=True)
    is_deleted = db.Column(db.Boolean, default=False)

    product_types = db.relationship('HoldIncentiveProductType', backref='hold_incentive',
                                    cascade="all, delete-orphan")

    def __repr__(self):
        return f'<HoldIncentive S={self.supplier_id} UT={self.user_type_id} {self.action}>'


class HoldIncentiveProductType(db.Model):
    __tablename__ = 'hold_incentive_product_type'
    id = db.Column(db.Integer, primary_key=True)
    hold_incentive_id = db.Column(db.Integer, db.ForeignKey('hold_incentive.id'), nullable=False)
    product_type_id = db.Column(db.Integer, db.ForeignKey('product_type.id'), nullable=False)
    duration = db.Column(db.Integer, default=0)  # days
    is_enabled = db.Column(db.Boolean, default=True)


class History(db.Model):
    """
    Append-only audit record of a single configuration field change.
    """
    __tablename__ = 'history'
    id = db.Column(db.Integer, primary_key=True)
    field_title = db.Column(db.String(128), nullable=False)
    old_value = db.Column(db.Float, nullable=True)
    new_value = db.Column(db.Float, nullable=True)
    actor = db.Column(db.String(128), nullable=True)
    action_from_id = db.Column(db.Integer, db.ForeignKey('user_type.id'), nullable=True)
    history_type = db.Column(db.Enum(HistoryType, native_enum=False), nullable=False,
                             default=HistoryType.INCENTIVE)

    incentive_rule_id = db.Column(db.Integer, db.ForeignKey('incentive_rule.id'), nullable=True, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey('supplier.id'), nullable=True)
    vertical_id = db.Column(db.Integer, db.ForeignKey('vertical.id'), nullable=True)
    product_type_id = db.Column(db.Integer, db.ForeignKey('product_type.id'), nullable=True)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id'), nullable=True)
    price_list = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime, index=True, default=datetime.utcnow)

    def __repr__(self):
        return f'<History {self.field_title}: {self.old_value} -> {self.new_value}>'


# --- Settlement ---

class SettlementRun(db.Model):
    """
    One end-of-month settlement attempt for a (supplier, vertical, user type,
    method, month, year) key. Re-running a settled period creates a new
    version; finished runs are never modified. Status changes go through
    loyalty.settlement.state, which updates conditionally on lock_version.
    """
    __tablename__ = 'settlement_run'
    id = db.Column(db.Integer, primary_key=True)

    supplier_id = db.Column(db.Integer, db.ForeignKey('supplier.id'), nullable=False)
    vertical_id = db.Column(db.Integer, db.ForeignKey('vertical.id'), nullable=False)
    user_type_id = db.Column(db.Integer, db.ForeignKey('user_type.id'), nullable=True)
    user_type_name = db.Column(db.String(128), nullable=True)
    # Resolution context, kept so a stalled run can be re-driven with the same scope
    product_type_id = db.Column(db.Integer, db.ForeignKey('product_type.id'), nullable=True)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id'), nullable=True)
    action = db.Column(db.Enum(Actions, native_enum=False), nullable=True)

    method = db.Column(db.Enum(MethodType, native_enum=False), nullable=False)
    status = db.Column(db.Enum(RunStatus, native_enum=False), nullable=False,
                       default=RunStatus.PENDING, index=True)
    date = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    month = db.Column(db.Integer, nullable=False)
    year = db.Column(db.Integer, nullable=False)
    version = db.Column(db.Integer, nullable=False, default=1)

    is_missing = db.Column(db.Boolean, nullable=False, default=False)
    preview_link = db.Column(db.String(512), nullable=True)
    failure_reason = db.Column(db.Text, nullable=True)
    cancel_requested = db.Column(db.Boolean, nullable=False, default=False)
    lock_version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow)

    supplier = db.relationship('Supplier')
    vertical = db.relationship('Vertical')
    user_type = db.relationship('UserType')
    breakdown = db.relationship('MethodBreakdown', backref='settlement_run', uselist=False)
    log = db.relationship('SettlementLog', backref='settlement_run', uselist=False)

    # supplier:vertical:user type (or *):method:year-month. A NULL user type
    # would slip through a multi-column unique constraint, a string key does not.
    period_key = db.Column(db.String(128), nullable=False, index=True)

    __table_args__ = (
        db.UniqueConstraint('period_key', 'version', name='_settlement_run_version_uc'),
    )

    def __repr__(self):
        return (f'<SettlementRun {self.id}: {self.method} {self.year}-{self.month} '
                f'v{self.version} {self.status}>')

    @property
    def is_stalled(self):
        return self.status == RunStatus.PROCESSING and self.failure_reason is not None


class MethodBreakdown(db.Model):
    """
    The persisted form of a breakdown variant. Which columns are populated
    depends on `method`: value (APPLYALL/REGION), users_link (USERS) or
    entries (GOVERNORATE/DISTRICT/SEGMENT).
    """
    __tablename__ = 'method_breakdown'
    id = db.Column(db.Integer, primary_key=True)
    settlement_run_id = db.Column(db.Integer, db.ForeignKey('settlement_run.id'), nullable=False, unique=True)
    method = db.Column(db.Enum(MethodType, native_enum=False), nullable=False)
    value = db.Column(db.Float, nullable=True)
    users_link = db.Column(db.String(512), nullable=True)
    incomplete = db.Column(db.Boolean, nullable=False, default=False)
    entries_json = db.Column(db.Text, nullable=True)

    def __repr__(self):
        return f'<MethodBreakdown {self.method} run={self.settlement_run_id}>'

    @property
    def entries(self):
        return json.loads(self.entries_json) if self.entries_json else []


class SettlementLog(db.Model):
    """
    Denormalized per-user ledger of a finished run version. Append-only.
    """
    __tablename__ = 'settlement_log'
    id = db.Column(db.Integer, primary_key=True)
    settlement_run_id = db.Column(db.Integer, db.ForeignKey('settlement_run.id'), nullable=False, unique=True)
    vertical_id = db.Column(db.Integer, db.ForeignKey('vertical.id'), nullable=False)
    supplier_id = db.Column(db.Integer, db.ForeignKey('supplier.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # If a log is deleted, all its rows go with it
    users = db.relationship('SettlementLogEntry', backref='settlement_log',
                            cascade="all, delete-orphan", order_by='SettlementLogEntry.position')

    def __repr__(self):
        return f'<SettlementLog {self.id}: run={self.settlement_run_id}>'


class SettlementLogEntry(db.Model):
    __tablename__ = 'settlement_log_entry'
    id = db.Column(db.Integer, primary_key=True)
    settlement_log_id = db.Column(db.Integer, db.ForeignKey('settlement_log.id'), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)
    user = db.Column(db.Integer, nullable=True, index=True)
    points = db.Column(db.Float, default=0)
    value = db.Column(db.Float, default=0)
    name = db.Column(db.String(256))
    district = db.Column(db.String(128))
    governorate = db.Column(db.String(128))
    phone = db.Column(db.String(32))

    def __repr__(self):
        return f'<SettlementLogEntry user={self.user} value={self.value}>'


# --- Settings ---

class AppSetting(db.Model):
    """
    Stores key-value pairs for the settlement business settings so they can be
    changed without a deployment.
    """
    __tablename__ = 'app_setting'
    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(128), unique=True, nullable=False, index=True)
    value = db.Column(db.String(256), nullable=False)
    description = db.Column(db.String(512))
    value_type = db.Column(db.String(32), default='string') # e.g., 'float', 'int', 'bool', 'string', 'json'

    def __repr__(self):
        return f'<AppSetting {self.key}: {self.value}>'

    def get_value(self):
        """Casts the string value to its correct Python type."""
        if self.value_type == 'float':
            return float(self.value)
        if self.value_type == 'int':
            return int(self.value)
        if self.value_type == 'bool':
            return self.value.strip().lower() in ('1', 'true', 'yes', 'on')
        if self.value_type == 'json':
            return json.loads(self.value)
        return self.value
