"""
Central configuration for DVcheck.

Keep runtime-safe (no secrets). Firestore credentials come from Streamlit
secrets (UI) or environment variables (CLI).
"""

# Member fields
DEPARTMENTS = ("RE", "RH", "Marketing", "IT")
ROLES = ("admin", "member")
DEFAULT_ROLE = "member"
YEAR_MIN = 1
YEAR_MAX = 5

# Spreadsheet template
TEMPLATE_HEADERS = ["Full Name", "Email", "Phone Number", "Password", "School", "Year", "Department", "Role"]
TEMPLATE_SHEET = "Users"
TEMPLATE_FILENAME = "DVcheck_User_Template.xlsx"
TEMPLATE_COLUMN_WIDTHS = [15, 25, 15, 20, 20, 8, 20, 10]

# Bulk import
SUMMARY_MAX_ERRORS = 10  # errors listed in the summary; the rest are counted

# QR rendering
QR_BOX_SIZE = 10
QR_BORDER = 2
QR_PIXEL_SIZE = 200

# Badge rendering
BADGE_FONT_SIZE = 24
BADGE_LINE_GAP_PX = 40

# Firestore
FIRESTORE_COLLECTION_USERS = "users"
FIRESTORE_COLLECTION_EVENTS = "events"
FIRESTORE_TIMEOUT_S = 30
FIRESTORE_MAX_ATTEMPTS = 3

# UI
MEMBERS_PAGE_PREVIEW_ROWS = 50
PREVIEW_WIDTH_QR = 200
EVENT_PICTURE_TYPES = ["png", "jpg", "jpeg", "gif", "webp"]

# Role lookup when the member store is unreachable: "member", "deny" or "email_heuristic"
ROLE_FALLBACK_POLICY = "member"
