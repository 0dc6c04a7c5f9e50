ROLES = ("guest", "member", "leader", "admin")
ROLE_RANK = {"guest": 0, "member": 1, "leader": 2, "admin": 3}
ROLE_LABELS = {"guest": "Non-member", "member": "Member", "leader": "Leader", "admin": "Admin"}

COURSE_TYPES = ("normal", "trial", "special", "style", "workshop", "rehearsal", "performance")
COURSE_TYPE_LABELS = {
    "normal": "Regular",
    "trial": "Trial class",
    "special": "Special regular",
    "style": "Style sampler",
    "workshop": "Workshop",
    "rehearsal": "Rehearsal",
    "performance": "Performance",
}
COURSE_STATUSES = ("draft", "published", "closed")

ENROLLMENT_STATUSES = ("enrolled", "waitlist", "cancelled")
ENROLLMENT_TYPES = ("full", "single")
ENROLLMENT_SOURCES = ("self", "admin", "card_purchase")

ATTENDANCE_STATUSES = (
    "unmarked", "present", "absent", "leave", "makeup", "transfer_in", "transfer_out",
)
ATTENDANCE_LABELS = {
    "unmarked": "Unmarked",
    "present": "Present",
    "absent": "Absent",
    "leave": "Leave",
    "makeup": "Makeup",
    "transfer_in": "Transfer in",
    "transfer_out": "Transfer out",
}
# statuses that leave a slot free for a new leave/makeup/transfer
FREE_ATTENDANCE = ("unmarked", "present", "absent")
# statuses that occupy a seat in the target session
OCCUPYING_ATTENDANCE = ("present", "makeup", "transfer_in")

REQUEST_STATUSES = ("pending", "approved", "rejected")
TRANSFER_STATUSES = ("pending", "approved", "rejected", "cancelled")
REVIEW_DECISIONS = ("approved", "rejected")

CARD_ORDER_STATUSES = ("pending", "remitted", "confirmed", "cancelled")
CARD_TRANSACTION_TYPES = ("purchase", "deduct", "refund", "expire", "admin_adjust")

DEFAULT_SYSTEM_CONFIG = {
    "card_purchase_open": ("false", "Whether members may request card purchases"),
    "card_purchase_start": ("", "First day card orders are accepted (YYYY-MM-DD)"),
    "card_purchase_end": ("", "Last day card orders are accepted (YYYY-MM-DD)"),
    "card_price_member": ("270", "Unit price per card for active members"),
    "card_price_non_member": ("370", "Unit price per card for non-members"),
    "card_min_purchase": ("5", "Minimum cards per order"),
    "card_expire_month": ("12", "Month (1-12) at whose end purchased cards expire"),
    "bank_info": ("", "Bank account shown on the purchase page"),
}

REVIEW_WINDOW_DAYS = 30
