"""Permission codes and system roles seeded at deployment."""

from __future__ import annotations

from typing import Dict, List, NamedTuple, Tuple

# Patient management
PATIENT_VIEW = "PATIENT_VIEW"
PATIENT_CREATE = "PATIENT_CREATE"
PATIENT_EDIT = "PATIENT_EDIT"
PATIENT_DELETE = "PATIENT_DELETE"
PATIENT_EXPORT = "PATIENT_EXPORT"

# Clinical care
MEDICAL_RECORD_VIEW = "MEDICAL_RECORD_VIEW"
MEDICAL_RECORD_CREATE = "MEDICAL_RECORD_CREATE"
MEDICAL_RECORD_EDIT = "MEDICAL_RECORD_EDIT"
MEDICAL_RECORD_DELETE = "MEDICAL_RECORD_DELETE"

# Prescriptions
PRESCRIPTION_VIEW = "PRESCRIPTION_VIEW"
PRESCRIPTION_CREATE = "PRESCRIPTION_CREATE"
PRESCRIPTION_PRESCRIBE_CONTROLLED = "PRESCRIPTION_PRESCRIBE_CONTROLLED"

# Scheduling
APPOINTMENT_VIEW = "APPOINTMENT_VIEW"
APPOINTMENT_CREATE = "APPOINTMENT_CREATE"
APPOINTMENT_EDIT = "APPOINTMENT_EDIT"
APPOINTMENT_CANCEL = "APPOINTMENT_CANCEL"

# Billing
INVOICE_VIEW = "INVOICE_VIEW"
INVOICE_CREATE = "INVOICE_CREATE"
INVOICE_REFUND = "INVOICE_REFUND"
INSURANCE_CLAIM_VIEW = "INSURANCE_CLAIM_VIEW"
INSURANCE_CLAIM_SUBMIT = "INSURANCE_CLAIM_SUBMIT"

# Laboratory and imaging
LAB_RESULT_VIEW = "LAB_RESULT_VIEW"
LAB_RESULT_CREATE = "LAB_RESULT_CREATE"
IMAGING_VIEW = "IMAGING_VIEW"

# Reporting
REPORT_VIEW = "REPORT_VIEW"
FINANCIAL_REPORT_VIEW = "FINANCIAL_REPORT_VIEW"

# Administration
USER_MANAGE = "USER_MANAGE"
ROLE_MANAGE = "ROLE_MANAGE"
SETTINGS_MANAGE = "SETTINGS_MANAGE"
AUDIT_LOG_VIEW = "AUDIT_LOG_VIEW"
SYSTEM_ADMIN = "SYSTEM_ADMIN"

# Emergency
EMERGENCY_ACCESS = "EMERGENCY_ACCESS"
BREAK_THE_GLASS = "BREAK_THE_GLASS"

EMERGENCY_PERMISSIONS = frozenset({EMERGENCY_ACCESS, BREAK_THE_GLASS})


class PermissionSeed(NamedTuple):
    code: str
    name: str
    category: str
    resource_type: str
    is_phi_related: bool
    is_system_permission: bool = False


DEFAULT_PERMISSIONS: Tuple[PermissionSeed, ...] = (
    PermissionSeed(PATIENT_VIEW, "View Patients", "PATIENT_MANAGEMENT", "PATIENT", True),
    PermissionSeed(PATIENT_CREATE, "Create Patients", "PATIENT_MANAGEMENT", "PATIENT", True),
    PermissionSeed(PATIENT_EDIT, "Edit Patients", "PATIENT_MANAGEMENT", "PATIENT", True),
    PermissionSeed(PATIENT_DELETE, "Delete Patients", "PATIENT_MANAGEMENT", "PATIENT", True),
    PermissionSeed(PATIENT_EXPORT, "Export Patient Data", "PATIENT_MANAGEMENT", "PATIENT", True),
    PermissionSeed(MEDICAL_RECORD_VIEW, "View Medical Records", "CLINICAL_CARE", "MEDICAL_RECORD", True),
    PermissionSeed(MEDICAL_RECORD_CREATE, "Create Medical Records", "CLINICAL_CARE", "MEDICAL_RECORD", True),
    PermissionSeed(MEDICAL_RECORD_EDIT, "Edit Medical Records", "CLINICAL_CARE", "MEDICAL_RECORD", True),
    PermissionSeed(MEDICAL_RECORD_DELETE, "Delete Medical Records", "CLINICAL_CARE", "MEDICAL_RECORD", True),
    PermissionSeed(PRESCRIPTION_VIEW, "View Prescriptions", "PRESCRIPTIONS", "PRESCRIPTION", True),
    PermissionSeed(PRESCRIPTION_CREATE, "Create Prescriptions", "PRESCRIPTIONS", "PRESCRIPTION", True),
    PermissionSeed(
        PRESCRIPTION_PRESCRIBE_CONTROLLED,
        "Prescribe Controlled Substances",
        "PRESCRIPTIONS",
        "PRESCRIPTION",
        True,
    ),
    PermissionSeed(APPOINTMENT_VIEW, "View Appointments", "SCHEDULING", "APPOINTMENT", False),
    PermissionSeed(APPOINTMENT_CREATE, "Create Appointments", "SCHEDULING", "APPOINTMENT", False),
    PermissionSeed(APPOINTMENT_EDIT, "Edit Appointments", "SCHEDULING", "APPOINTMENT", False),
    PermissionSeed(APPOINTMENT_CANCEL, "Cancel Appointments", "SCHEDULING", "APPOINTMENT", False),
    PermissionSeed(INVOICE_VIEW, "View Billing", "BILLING", "INVOICE", False),
    PermissionSeed(INVOICE_CREATE, "Create Bills", "BILLING", "INVOICE", False),
    PermissionSeed(INVOICE_REFUND, "Process Refunds", "BILLING", "INVOICE", False),
    PermissionSeed(INSURANCE_CLAIM_VIEW, "View Insurance Claims", "BILLING", "INSURANCE_CLAIM", True),
    PermissionSeed(INSURANCE_CLAIM_SUBMIT, "Submit Insurance Claims", "BILLING", "INSURANCE_CLAIM", True),
    PermissionSeed(LAB_RESULT_VIEW, "View Lab Results", "LABORATORY", "LAB_RESULT", True),
    PermissionSeed(LAB_RESULT_CREATE, "Create Lab Results", "LABORATORY", "LAB_RESULT", True),
    PermissionSeed(IMAGING_VIEW, "View Imaging", "IMAGING", "IMAGING", True),
    PermissionSeed(REPORT_VIEW, "View Reports", "REPORTING", "REPORT", False),
    PermissionSeed(FINANCIAL_REPORT_VIEW, "View Financial Reports", "REPORTING", "FINANCIAL_REPORT", False),
    PermissionSeed(USER_MANAGE, "Manage Users", "ADMINISTRATION", "USER", False, True),
    PermissionSeed(ROLE_MANAGE, "Manage Roles", "ADMINISTRATION", "ROLE", False, True),
    PermissionSeed(SETTINGS_MANAGE, "Manage Settings", "ADMINISTRATION", "SETTINGS", False, True),
    PermissionSeed(AUDIT_LOG_VIEW, "View Audit Logs", "ADMINISTRATION", "AUDIT_LOG", True, True),
    PermissionSeed(SYSTEM_ADMIN, "System Administrator", "ADMINISTRATION", "SYSTEM", False, True),
    PermissionSeed(EMERGENCY_ACCESS, "Emergency Access", "EMERGENCY", "PATIENT", True, True),
    PermissionSeed(BREAK_THE_GLASS, "Break-the-Glass Access", "EMERGENCY", "PATIENT", True, True),
)


def _all_codes() -> List[str]:
    return [seed.code for seed in DEFAULT_PERMISSIONS]


SYSTEM_ROLES: Dict[str, Tuple[str, List[str]]] = {
    "SYSTEM_ADMIN": ("System Administrator with full access", _all_codes()),
    "PHYSICIAN": (
        "Physician with clinical access",
        [
            PATIENT_VIEW,
            PATIENT_EDIT,
            MEDICAL_RECORD_VIEW,
            MEDICAL_RECORD_CREATE,
            MEDICAL_RECORD_EDIT,
            PRESCRIPTION_VIEW,
            PRESCRIPTION_CREATE,
            PRESCRIPTION_PRESCRIBE_CONTROLLED,
            APPOINTMENT_VIEW,
            LAB_RESULT_VIEW,
            IMAGING_VIEW,
            EMERGENCY_ACCESS,
        ],
    ),
    "NURSE": (
        "Nurse with clinical support access",
        [
            PATIENT_VIEW,
            MEDICAL_RECORD_VIEW,
            MEDICAL_RECORD_CREATE,
            PRESCRIPTION_VIEW,
            APPOINTMENT_VIEW,
            APPOINTMENT_EDIT,
            LAB_RESULT_VIEW,
        ],
    ),
    "RECEPTIONIST": (
        "Front desk with scheduling access",
        [
            PATIENT_VIEW,
            PATIENT_CREATE,
            APPOINTMENT_VIEW,
            APPOINTMENT_CREATE,
            APPOINTMENT_EDIT,
            APPOINTMENT_CANCEL,
        ],
    ),
    "BILLING_STAFF": (
        "Billing department access",
        [
            PATIENT_VIEW,
            INVOICE_VIEW,
            INVOICE_CREATE,
            INVOICE_REFUND,
            INSURANCE_CLAIM_VIEW,
            INSURANCE_CLAIM_SUBMIT,
        ],
    ),
}
