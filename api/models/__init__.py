from models.user import User
from models.vendor_profile import VendorProfile
from models.location_zone import LocationZone
from models.subscription_plan import SubscriptionPlan
from models.promo_code import PromoCode
from models.transaction import Transaction
from models.user_subscription import UserSubscription
from models.vendor_assignment_request import VendorAssignmentRequest
from models.purchase_workflow import PurchaseWorkflow

__all__ = [
    "User", "VendorProfile", "LocationZone", "SubscriptionPlan", "PromoCode",
    "Transaction", "UserSubscription", "VendorAssignmentRequest", "PurchaseWorkflow",
]
