"""
Subscription and payment record vocabulary
"""

# Subscription statuses
SUBSCRIPTION_STATUS_TRIAL = "trial"
SUBSCRIPTION_STATUS_ACTIVE = "active"
SUBSCRIPTION_STATUS_CANCELLED = "cancelled"
SUBSCRIPTION_STATUSES = frozenset({
    SUBSCRIPTION_STATUS_TRIAL,
    SUBSCRIPTION_STATUS_ACTIVE,
    SUBSCRIPTION_STATUS_CANCELLED,
})

# Renewal types
RENEWAL_AUTO = "auto"
RENEWAL_MANUAL = "manual"
RENEWAL_TYPES = frozenset({RENEWAL_AUTO, RENEWAL_MANUAL})

# Payment record statuses
PAYMENT_SUCCEEDED = "succeeded"
PAYMENT_FAILED = "failed"
PAYMENT_PENDING = "pending"
PAYMENT_CANCELLED = "cancelled"
PAYMENT_REFUNDED = "refunded"
PAYMENT_STATUSES = frozenset({
    PAYMENT_SUCCEEDED,
    PAYMENT_FAILED,
    PAYMENT_PENDING,
    PAYMENT_CANCELLED,
    PAYMENT_REFUNDED,
})

# Changing any of these invalidates the whole generated payment history
LEDGER_KEY_FIELDS = ("amount", "billing_cycle", "start_date", "status")

# Payment fields that feed the monthly category summary
SUMMARY_FIELDS = (
    "payment_date",
    "amount_paid",
    "currency",
    "status",
    "billing_period_start",
    "billing_period_end",
)

# Sentinel category for subscriptions without a (valid) category
OTHER_CATEGORY_VALUE = "other"

# Notes written on generated payment records
NOTE_GENERATED = "Auto-generated from subscription data"
NOTE_AUTO_RENEWAL = "Auto renewal payment"
NOTE_MANUAL_RENEWAL = "Manual renewal payment"
NOTE_REACTIVATION = "Subscription reactivation payment"
