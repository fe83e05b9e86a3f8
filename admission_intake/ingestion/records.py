"""
Patient admission record model and tabular header mapping.
"""

import re
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, field_validator, model_validator

# Target table columns, in insert order. ``inserted_at`` is appended by the inserter.
ADMISSION_COLUMNS = [
    'patient_id',
    'first_name',
    'last_name',
    'date_of_birth',
    'gender',
    'admission_date',
    'discharge_date',
    'ward_number',
    'bed_number',
    'diagnosis',
    'treatment_plan',
    'attending_physician_id',
    'emergency_contact_name',
    'emergency_contact_phone',
    'insurance_provider',
]

IDENTIFIER_COLUMN = 'patient_id'
TIMESTAMP_COLUMN = 'inserted_at'

# Header spellings seen in exports that don't reduce to a canonical name on their own.
HEADER_ALIASES = {
    'patientid': 'patient_id',
    'firstname': 'first_name',
    'lastname': 'last_name',
    'dob': 'date_of_birth',
    'birth_date': 'date_of_birth',
    'dateofbirth': 'date_of_birth',
    'sex': 'gender',
    'admitted': 'admission_date',
    'admissiondate': 'admission_date',
    'discharged': 'discharge_date',
    'dischargedate': 'discharge_date',
    'ward': 'ward_number',
    'ward_no': 'ward_number',
    'bed': 'bed_number',
    'bed_no': 'bed_number',
    'attending_physician': 'attending_physician_id',
    'attending_id': 'attending_physician_id',
    'doctor_id': 'attending_physician_id',
    'insurance': 'insurance_provider',
}


def normalize_header(header: Any) -> str:
    """Map a raw column header onto a canonical column name."""
    if header is None:
        return ''

    text = str(header).strip()
    # PatientID -> Patient_ID
    text = re.sub(r'(?<=[a-z0-9])(?=[A-Z])', '_', text)
    text = re.sub(r'[^0-9a-zA-Z]+', '_', text).strip('_').lower()

    if text in HEADER_ALIASES:
        return HEADER_ALIASES[text]
    squashed = text.replace('_', '')
    if squashed in HEADER_ALIASES:
        return HEADER_ALIASES[squashed]
    return text


def normalize_row(row: Dict[Any, Any]) -> Dict[str, Any]:
    """Re-key a parsed row by canonical column names, keeping the first of any clashes."""
    normalized = {}
    for header, value in row.items():
        key = normalize_header(header)
        if key and key not in normalized:
            normalized[key] = value
    return normalized


def is_blank_row(row: Dict[str, Any]) -> bool:
    return all(value is None or (isinstance(value, str) and not value.strip()) for value in row.values())


def row_identifier(row: Dict[str, Any]) -> Optional[str]:
    """The deduplication key of a raw row, or None when it has none."""
    value = row.get(IDENTIFIER_COLUMN)
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


class PatientAdmission(BaseModel):
    """One admission row, validated against the target table's schema."""

    patient_id: str
    first_name: str
    last_name: str
    date_of_birth: date
    gender: str
    admission_date: date
    discharge_date: Optional[date] = None
    ward_number: int
    bed_number: int
    diagnosis: Optional[str] = None
    treatment_plan: Optional[str] = None
    attending_physician_id: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    insurance_provider: Optional[str] = None

    @model_validator(mode='before')
    @classmethod
    def clean_values(cls, data):
        if not isinstance(data, dict):
            return data

        cleaned = {}
        for key, value in data.items():
            if isinstance(value, str):
                value = value.strip() or None
            elif isinstance(value, datetime):
                value = value.date()
            cleaned[key] = value
        return cleaned

    @field_validator(
        'patient_id', 'attending_physician_id', 'emergency_contact_phone',
        mode='before',
    )
    @classmethod
    def coerce_code(cls, v):
        # Spreadsheet cells hand back numbers for codes and phone numbers
        if isinstance(v, float) and v.is_integer():
            v = int(v)
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator('first_name', 'last_name', 'gender')
    @classmethod
    def validate_required_text(cls, v):
        if not v.strip():
            raise ValueError('value is required')
        return v

    @field_validator('ward_number', 'bed_number')
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError('must be positive')
        return v

    @model_validator(mode='after')
    def validate_stay(self):
        if self.discharge_date and self.discharge_date < self.admission_date:
            raise ValueError('discharge_date is before admission_date')
        return self

    def column_values(self) -> List[Any]:
        """Field values in table column order."""
        return [getattr(self, column) for column in ADMISSION_COLUMNS]
