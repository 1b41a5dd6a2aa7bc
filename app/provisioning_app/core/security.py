from __future__ import annotations

ROLE_STUDENT = "student"
ROLE_UNIVERSITY = "university"
ROLE_SOFTWARE_HOUSE = "software_house"
ROLE_GUEST = "guest"
ROLE_ADMIN = "admin"
ROLE_CHOICES = (
    ROLE_STUDENT,
    ROLE_UNIVERSITY,
    ROLE_SOFTWARE_HOUSE,
    ROLE_GUEST,
    ROLE_ADMIN,
)
# Roles an identity may claim for itself through sign-up metadata.
SELF_ASSIGNABLE_ROLES = (
    ROLE_STUDENT,
    ROLE_UNIVERSITY,
    ROLE_SOFTWARE_HOUSE,
    ROLE_GUEST,
)
ROLE_LOWEST_PRIVILEGE = ROLE_STUDENT
BATCH_PROVISIONING_ROLE = ROLE_STUDENT
ADMIN_PORTAL_ROLES = (ROLE_ADMIN,)
BULK_UPLOAD_ROLES = (ROLE_UNIVERSITY,)

APPROVAL_PENDING = "pending"
APPROVAL_APPROVED = "approved"
APPROVAL_REJECTED = "rejected"
APPROVAL_STATUSES = (APPROVAL_PENDING, APPROVAL_APPROVED, APPROVAL_REJECTED)


def normalize_role(value: str | None) -> str:
    return str(value or "").strip().lower()


def is_known_role(value: str | None) -> bool:
    return normalize_role(value) in ROLE_CHOICES


def infer_role(metadata: dict | None) -> str:
    claimed = normalize_role((metadata or {}).get("role"))
    if claimed in SELF_ASSIGNABLE_ROLES:
        return claimed
    return ROLE_LOWEST_PRIVILEGE


def initial_active_flag(role: str) -> bool:
    # University accounts wait for explicit activation.
    return normalize_role(role) != ROLE_UNIVERSITY
