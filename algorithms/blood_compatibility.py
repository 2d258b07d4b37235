"""
Blood Type Compatibility Helper
Determines which donor blood types can donate to which patient blood types,
and how far to search for donors at each urgency level
"""

BLOOD_TYPES = ['A+', 'A-', 'B+', 'B-', 'AB+', 'AB-', 'O+', 'O-']

BLOOD_TYPE_CHOICES = [(bt, bt) for bt in BLOOD_TYPES]

# Donor blood type -> patient blood types it may be transfused into
COMPATIBILITY = {
    'O-': ['O-', 'O+', 'A-', 'A+', 'B-', 'B+', 'AB-', 'AB+'],  # Universal donor
    'O+': ['O+', 'A+', 'B+', 'AB+'],
    'A-': ['A-', 'A+', 'AB-', 'AB+'],
    'A+': ['A+', 'AB+'],
    'B-': ['B-', 'B+', 'AB-', 'AB+'],
    'B+': ['B+', 'AB+'],
    'AB-': ['AB-', 'AB+'],
    'AB+': ['AB+'],  # Universal recipient
}

# Urgency levels, most urgent first
URGENCY_CRITICAL = 'critical'
URGENCY_URGENT = 'urgent'
URGENCY_STANDARD = 'standard'

URGENCY_LEVELS = [URGENCY_CRITICAL, URGENCY_URGENT, URGENCY_STANDARD]

URGENCY_CHOICES = [
    (URGENCY_CRITICAL, 'Critical - Life Threatening'),
    (URGENCY_URGENT, 'Urgent'),
    (URGENCY_STANDARD, 'Standard'),
]

# Search radius in km
URGENCY_RADIUS_KM = {
    URGENCY_CRITICAL: 5,
    URGENCY_URGENT: 10,
    URGENCY_STANDARD: 20,
}

# Sort position used when listing requests (critical first)
URGENCY_RANK = {level: rank for rank, level in enumerate(URGENCY_LEVELS)}


def can_donate(donor_blood_type, patient_blood_type):
    """
    Check if donor blood type may be given to the patient.

    Unknown blood types are a programming error and raise KeyError.
    """
    if patient_blood_type not in COMPATIBILITY:
        raise KeyError(patient_blood_type)
    return patient_blood_type in COMPATIBILITY[donor_blood_type]


def compatible_donor_types(patient_blood_type):
    """
    Get the set of blood types that can donate to the patient
    """
    if patient_blood_type not in COMPATIBILITY:
        raise KeyError(patient_blood_type)
    return frozenset(
        donor_type
        for donor_type, recipients in COMPATIBILITY.items()
        if patient_blood_type in recipients
    )


def compatible_recipient_types(donor_blood_type):
    """
    Get the set of blood types that can receive from the donor
    """
    return frozenset(COMPATIBILITY[donor_blood_type])


def urgency_radius(urgency_level):
    """Maximum donor search distance (km) for an urgency level"""
    return URGENCY_RADIUS_KM[urgency_level]


def is_sms_priority(urgency_level):
    """Critical requests are sent as priority SMS"""
    if urgency_level not in URGENCY_RADIUS_KM:
        raise KeyError(urgency_level)
    return urgency_level == URGENCY_CRITICAL
