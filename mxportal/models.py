from datetime import datetime, date
from decimal import Decimal
import enum

from .extensions import db


class OrderStatus(enum.Enum):
    created = "CREATED"
    accepted = "ACCEPTED"
    preparing = "PREPARING"
    ready_for_pickup = "READY_FOR_PICKUP"
    out_for_delivery = "OUT_FOR_DELIVERY"
    delivered = "DELIVERED"
    cancelled = "CANCELLED"
    rto = "RTO"


class MerchantParent(db.Model):
    __tablename__ = 'merchant_parents'

    id = db.Column(db.Integer, primary_key=True)
    parent_name = db.Column(db.String(255), nullable=False)
    owner_email = db.Column(db.String(255))
    phone = db.Column(db.String(50))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class MerchantStore(db.Model):
    __tablename__ = 'merchant_stores'

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.String(32), unique=True, nullable=False)
    parent_id = db.Column(db.Integer, db.ForeignKey('merchant_parents.id'))
    store_name = db.Column(db.String(255), nullable=False)
    store_display_name = db.Column(db.String(255))
    owner_name = db.Column(db.String(255))
    store_email = db.Column(db.String(255))
    store_phones = db.Column(db.String(120))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    parent = db.relationship('MerchantParent', backref=db.backref('stores', lazy=True))

    @property
    def primary_phone(self) -> str:
        first = (self.store_phones or '').split(',')[0]
        return ''.join(ch for ch in first if ch.isdigit())[:15]


class FoodOrder(db.Model):
    __tablename__ = 'orders_food'

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, unique=True, nullable=False)
    formatted_order_id = db.Column(db.String(64))
    merchant_store_id = db.Column(db.Integer, db.ForeignKey('merchant_stores.id'), nullable=False)
    order_status = db.Column(db.String(32), default=OrderStatus.created.value)
    customer_name = db.Column(db.String(255))
    rider_name = db.Column(db.String(255))
    rider_phone = db.Column(db.String(50))
    food_items_total_value = db.Column(db.Numeric(12, 2), default=Decimal('0.00'))
    preparation_time_minutes = db.Column(db.Integer)
    rejected_reason = db.Column(db.Text)
    is_rto = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow)
    accepted_at = db.Column(db.DateTime)
    prepared_at = db.Column(db.DateTime)
    dispatched_at = db.Column(db.DateTime)
    delivered_at = db.Column(db.DateTime)
    cancelled_at = db.Column(db.DateTime)
    rto_at = db.Column(db.DateTime)

    store = db.relationship('MerchantStore', backref=db.backref('food_orders', lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "formatted_order_id": self.formatted_order_id,
            "merchant_store_id": self.merchant_store_id,
            "order_status": self.order_status,
            "customer_name": self.customer_name,
            "rider_name": self.rider_name,
            "rider_phone": self.rider_phone,
            "food_items_total_value": float(self.food_items_total_value or 0),
            "preparation_time_minutes": self.preparation_time_minutes,
            "rejected_reason": self.rejected_reason,
            "is_rto": bool(self.is_rto),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "accepted_at": _iso(self.accepted_at),
            "prepared_at": _iso(self.prepared_at),
            "dispatched_at": _iso(self.dispatched_at),
            "delivered_at": _iso(self.delivered_at),
            "cancelled_at": _iso(self.cancelled_at),
            "rto_at": _iso(self.rto_at),
        }


class FoodOrderOtp(db.Model):
    __tablename__ = 'order_food_otps'

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, unique=True, nullable=False)
    otp_code = db.Column(db.String(10), nullable=False)
    otp_type = db.Column(db.String(20), default='PICKUP', nullable=False)
    attempt_count = db.Column(db.Integer, default=0, nullable=False)
    locked_until = db.Column(db.DateTime)
    verified_at = db.Column(db.DateTime)
    verified_by = db.Column(db.String(40))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow)


class FoodOrderOtpAudit(db.Model):
    __tablename__ = 'order_food_otp_audit'

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, nullable=False)
    action = db.Column(db.String(40), nullable=False)
    otp_type = db.Column(db.String(20))
    meta_info = db.Column('metadata', db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class MerchantWallet(db.Model):
    __tablename__ = 'merchant_wallet'

    id = db.Column(db.Integer, primary_key=True)
    merchant_store_id = db.Column(db.Integer, db.ForeignKey('merchant_stores.id'), unique=True, nullable=False)
    available_balance = db.Column(db.Numeric(12, 2), default=Decimal('0.00'), nullable=False)
    pending_balance = db.Column(db.Numeric(12, 2), default=Decimal('0.00'), nullable=False)
    hold_balance = db.Column(db.Numeric(12, 2), default=Decimal('0.00'), nullable=False)
    reserve_balance = db.Column(db.Numeric(12, 2), default=Decimal('0.00'), nullable=False)
    total_earned = db.Column(db.Numeric(12, 2), default=Decimal('0.00'), nullable=False)
    total_withdrawn = db.Column(db.Numeric(12, 2), default=Decimal('0.00'), nullable=False)
    total_penalty = db.Column(db.Numeric(12, 2), default=Decimal('0.00'), nullable=False)
    total_commission_deducted = db.Column(db.Numeric(12, 2), default=Decimal('0.00'), nullable=False)
    status = db.Column(db.String(20), default='ACTIVE', nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    store = db.relationship('MerchantStore', backref=db.backref('wallet', uselist=False, lazy=True))


class MerchantWalletLedger(db.Model):
    __tablename__ = 'merchant_wallet_ledger'

    id = db.Column(db.Integer, primary_key=True)
    wallet_id = db.Column(db.Integer, db.ForeignKey('merchant_wallet.id'), nullable=False, index=True)
    direction = db.Column(db.String(10), nullable=False)
    category = db.Column(db.String(40), nullable=False)
    balance_type = db.Column(db.String(20), default='AVAILABLE', nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    balance_after = db.Column(db.Numeric(12, 2), nullable=False)
    reference_type = db.Column(db.String(40))
    reference_id = db.Column(db.Integer)
    reference_extra = db.Column(db.String(255))
    description = db.Column(db.Text)
    meta_info = db.Column('metadata', db.Text)
    idempotency_key = db.Column(db.String(120), unique=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    wallet = db.relationship('MerchantWallet', backref=db.backref('ledger_entries', lazy='dynamic'))


class MerchantBankAccount(db.Model):
    __tablename__ = 'merchant_store_bank_accounts'

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey('merchant_stores.id'), nullable=False)
    account_holder_name = db.Column(db.String(255), nullable=False)
    account_number = db.Column(db.String(40), nullable=False)
    ifsc_code = db.Column(db.String(11), nullable=False)
    bank_name = db.Column(db.String(120), nullable=False)
    branch_name = db.Column(db.String(120))
    is_primary = db.Column(db.Boolean, default=False, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    verification_status = db.Column(db.String(20), default='pending', nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    store = db.relationship('MerchantStore', backref=db.backref('bank_accounts', lazy=True))


class BankVerificationPayout(db.Model):
    __tablename__ = 'merchant_bank_verification_payouts'

    id = db.Column(db.Integer, primary_key=True)
    merchant_parent_id = db.Column(db.Integer, db.ForeignKey('merchant_parents.id'), nullable=False, index=True)
    merchant_store_id = db.Column(db.Integer, db.ForeignKey('merchant_stores.id'), nullable=False)
    bank_account_id = db.Column(db.Integer, db.ForeignKey('merchant_store_bank_accounts.id'))
    account_type = db.Column(db.String(10), nullable=False)
    amount_paise = db.Column(db.Integer, nullable=False)
    beneficiary_name = db.Column(db.String(255))
    account_number_masked = db.Column(db.String(40))
    ifsc_code = db.Column(db.String(11))
    bank_name = db.Column(db.String(120))
    upi_id = db.Column(db.String(120))
    razorpay_contact_id = db.Column(db.String(64))
    razorpay_fund_account_id = db.Column(db.String(64))
    razorpay_payout_id = db.Column(db.String(64))
    razorpay_status = db.Column(db.String(32))
    status = db.Column(db.String(20), default='processing', nullable=False)
    failure_reason = db.Column(db.Text)
    meta_info = db.Column('metadata', db.Text)
    attempted_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class VerificationLimit(db.Model):
    __tablename__ = 'merchant_verification_limits'

    store_id = db.Column(db.Integer, db.ForeignKey('merchant_stores.id'), primary_key=True)
    bank_attempts_today = db.Column(db.Integer, default=0, nullable=False)
    upi_attempts_today = db.Column(db.Integer, default=0, nullable=False)
    last_reset_date = db.Column(db.Date, default=date.today, nullable=False)


class CommissionRule(db.Model):
    __tablename__ = 'platform_commission_rules'

    id = db.Column(db.Integer, primary_key=True)
    merchant_store_id = db.Column(db.Integer, db.ForeignKey('merchant_stores.id'))
    merchant_parent_id = db.Column(db.Integer, db.ForeignKey('merchant_parents.id'))
    commission_percentage = db.Column(db.Numeric(5, 2), nullable=False)
    effective_from = db.Column(db.Date, nullable=False)
    effective_to = db.Column(db.Date)


class PayoutRequest(db.Model):
    __tablename__ = 'merchant_payout_requests'

    id = db.Column(db.Integer, primary_key=True)
    wallet_id = db.Column(db.Integer, db.ForeignKey('merchant_wallet.id'), nullable=False)
    bank_account_id = db.Column(db.Integer, db.ForeignKey('merchant_store_bank_accounts.id'), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    commission_percentage = db.Column(db.Numeric(5, 2), default=Decimal('0'), nullable=False)
    commission_amount = db.Column(db.Numeric(12, 2), default=Decimal('0'), nullable=False)
    net_payout_amount = db.Column(db.Numeric(12, 2), nullable=False)
    status = db.Column(db.String(20), default='PENDING', nullable=False)
    debit_ledger_id = db.Column(db.Integer, db.ForeignKey('merchant_wallet_ledger.id'))
    requested_by = db.Column(db.String(120))
    requested_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class MerchantPlan(db.Model):
    __tablename__ = 'merchant_plans'

    id = db.Column(db.Integer, primary_key=True)
    plan_code = db.Column(db.String(50), unique=True, nullable=False)
    plan_name = db.Column(db.String(120), nullable=False)
    price = db.Column(db.Numeric(10, 2), default=Decimal('0.00'), nullable=False)
    billing_days = db.Column(db.Integer, default=30, nullable=False)
    description = db.Column(db.Text)
    display_order = db.Column(db.Integer, default=0, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)


class MerchantSubscription(db.Model):
    __tablename__ = 'merchant_subscriptions'

    id = db.Column(db.Integer, primary_key=True)
    merchant_id = db.Column(db.Integer, db.ForeignKey('merchant_parents.id'), nullable=False)
    store_id = db.Column(db.Integer, db.ForeignKey('merchant_stores.id'), nullable=False)
    plan_id = db.Column(db.Integer, db.ForeignKey('merchant_plans.id'), nullable=False)
    subscription_status = db.Column(db.String(20), default='ACTIVE', nullable=False)
    payment_status = db.Column(db.String(20), default='PENDING', nullable=False)
    start_date = db.Column(db.DateTime)
    expiry_date = db.Column(db.DateTime)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    auto_renew = db.Column(db.Boolean, default=False, nullable=False)
    last_payment_date = db.Column(db.DateTime)
    next_billing_date = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    plan = db.relationship('MerchantPlan', lazy=True)


class SubscriptionPayment(db.Model):
    __tablename__ = 'subscription_payments'

    id = db.Column(db.Integer, primary_key=True)
    merchant_id = db.Column(db.Integer, db.ForeignKey('merchant_parents.id'), nullable=False)
    store_id = db.Column(db.Integer, db.ForeignKey('merchant_stores.id'), nullable=False)
    subscription_id = db.Column(db.Integer, db.ForeignKey('merchant_subscriptions.id'), nullable=False)
    plan_id = db.Column(db.Integer, db.ForeignKey('merchant_plans.id'), nullable=False)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    payment_gateway = db.Column(db.String(32), default='RAZORPAY', nullable=False)
    payment_gateway_id = db.Column(db.String(64), unique=True)
    payment_gateway_response = db.Column(db.Text)
    payment_status = db.Column(db.String(20), default='PAID', nullable=False)
    payment_date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    billing_period_start = db.Column(db.DateTime)
    billing_period_end = db.Column(db.DateTime)


class OnboardingPayment(db.Model):
    __tablename__ = 'merchant_onboarding_payments'

    id = db.Column(db.Integer, primary_key=True)
    merchant_parent_id = db.Column(db.Integer, db.ForeignKey('merchant_parents.id'), nullable=False)
    merchant_store_id = db.Column(db.Integer, db.ForeignKey('merchant_stores.id'))
    razorpay_order_id = db.Column(db.String(64), unique=True, nullable=False)
    razorpay_payment_id = db.Column(db.String(64))
    razorpay_status = db.Column(db.String(32))
    amount_paise = db.Column(db.Integer)
    status = db.Column(db.String(20), default='created', nullable=False)
    failure_reason = db.Column(db.Text)
    captured_at = db.Column(db.DateTime)
    failed_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class AuditLog(db.Model):
    __tablename__ = 'audit_log'

    id = db.Column(db.Integer, primary_key=True)
    ts = db.Column(db.DateTime, default=datetime.utcnow)
    user = db.Column(db.String(80))
    action = db.Column(db.String(120))
    details = db.Column(db.Text)
    resource_type = db.Column(db.String(64))
    resource_id = db.Column(db.Integer)
    before_state = db.Column(db.Text)
    after_state = db.Column(db.Text)
    ip_address = db.Column(db.String(64))
    user_agent = db.Column(db.String(255))


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
