from app.models.user import User
from app.models.cooperative import Cooperative
from app.models.member import Member, MemberRole, MemberStatus
from app.models.contribution_plan import ContributionPlan
from app.models.group_buy import GroupBuy
from app.models.loan import Loan
from app.models.plan import SubscriptionPlan, LIMIT_DISABLED, LIMIT_UNLIMITED
from app.models.subscription import Subscription, SubscriptionStatus, BillingCycle
from app.models.subscription_payment import SubscriptionPayment, PaymentStatus, TransactionType
from app.models.webhook_event import PaystackWebhookEvent
from app.models.notification import Notification
from app.models.activity import Activity, ActivityAction

__all__ = [
    "User", "Cooperative", "Member", "MemberRole", "MemberStatus",
    "ContributionPlan", "GroupBuy", "Loan",
    "SubscriptionPlan", "LIMIT_DISABLED", "LIMIT_UNLIMITED",
    "Subscription", "SubscriptionStatus", "BillingCycle",
    "SubscriptionPayment", "PaymentStatus", "TransactionType",
    "PaystackWebhookEvent", "Notification", "Activity", "ActivityAction",
]
