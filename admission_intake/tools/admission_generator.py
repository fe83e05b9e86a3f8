"""
Generates zipped admission exports for exercising the pipeline end to end.
"""

import csv
import random
import zipfile
import argparse
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytz

# Export headers as the hospital system writes them
EXPORT_HEADERS = [
    'Patient ID', 'First Name', 'Last Name', 'Date of Birth', 'Gender',
    'Admission Date', 'Discharge Date', 'Ward Number', 'Bed Number',
    'Diagnosis', 'Treatment Plan', 'Attending Physician ID',
    'Emergency Contact Name', 'Emergency Contact Phone', 'Insurance Provider',
]

FIRST_NAMES = ["Thandi", "Sipho", "Ayesha", "Johan", "Lerato", "Pieter", "Naledi", "Kabelo", "Mei", "Tomas"]
LAST_NAMES = ["Nkosi", "Botha", "Pillay", "Dlamini", "van Wyk", "Mokoena", "Naidoo", "Smith"]
DIAGNOSES = ["Pneumonia", "Appendicitis", "Fractured femur", "Type 2 diabetes", "Hypertension", ""]
TREATMENTS = ["IV antibiotics", "Surgery", "Observation", "Physiotherapy", ""]
INSURERS = ["Discovery", "Bonitas", "Momentum", ""]

HOSPITAL_TZ = pytz.timezone('Africa/Johannesburg')


class AdmissionGenerator:
    """Generates realistic admission rows."""

    def __init__(self, first_patient_number: int = 1, seed: Optional[int] = None):
        self.patient_counter = first_patient_number
        self.random = random.Random(seed)

    def generate_admission(self) -> Dict[str, Any]:
        """Generate a single admission row."""
        today = datetime.now(HOSPITAL_TZ).date()
        birth = today - timedelta(days=self.random.randint(365, 90 * 365))
        admitted = today - timedelta(days=self.random.randint(0, 30))
        discharged: Optional[date] = None
        if self.random.random() < 0.6:
            discharged = admitted + timedelta(days=self.random.randint(0, 14))

        admission = {
            'Patient ID': f"P{self.patient_counter:03d}",
            'First Name': self.random.choice(FIRST_NAMES),
            'Last Name': self.random.choice(LAST_NAMES),
            'Date of Birth': birth.isoformat(),
            'Gender': self.random.choice(['F', 'M']),
            'Admission Date': admitted.isoformat(),
            'Discharge Date': discharged.isoformat() if discharged else '',
            'Ward Number': self.random.randint(1, 12),
            'Bed Number': self.random.randint(1, 40),
            'Diagnosis': self.random.choice(DIAGNOSES),
            'Treatment Plan': self.random.choice(TREATMENTS),
            'Attending Physician ID': f"D{self.random.randint(100, 199)}",
            'Emergency Contact Name': f"{self.random.choice(FIRST_NAMES)} {self.random.choice(LAST_NAMES)}",
            'Emergency Contact Phone': f"0{self.random.randint(600000000, 849999999)}",
            'Insurance Provider': self.random.choice(INSURERS),
        }

        self.patient_counter += 1
        return admission

    def generate_admissions(self, count: int) -> List[Dict[str, Any]]:
        return [self.generate_admission() for _ in range(count)]

    def write_csv(self, output_path, admissions: List[Dict[str, Any]]) -> Path:
        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)

        with open(output_file, 'w', newline='', encoding='utf-8') as csvfile:
            writer = csv.DictWriter(csvfile, fieldnames=EXPORT_HEADERS)
            writer.writeheader()
            writer.writerows(admissions)
        return output_file

    def generate_archive(self, output_path, count: int = 25, csv_name: str = 'admissions.csv') -> Path:
        """Write count admissions to a CSV and zip it as the export attachment."""
        archive_path = Path(output_path)
        archive_path.parent.mkdir(parents=True, exist_ok=True)

        csv_path = self.write_csv(archive_path.with_suffix('.csv'), self.generate_admissions(count))
        try:
            with zipfile.ZipFile(archive_path, 'w', compression=zipfile.ZIP_DEFLATED) as archive:
                archive.write(csv_path, arcname=csv_name)
        finally:
            csv_path.unlink()

        return archive_path


def main():
    """Main entry point for archive generation."""
    parser = argparse.ArgumentParser(description='Generate a zipped admission export for testing')
    parser.add_argument('--output', '-o', required=True, help='Output .zip path')
    parser.add_argument('--count', '-c', type=int, default=25, help='Number of admissions to generate')
    parser.add_argument('--start', type=int, default=1, help='First patient number')
    parser.add_argument('--seed', type=int, help='Random seed for reproducible output')

    args = parser.parse_args()

    generator = AdmissionGenerator(first_patient_number=args.start, seed=args.seed)
    archive = generator.generate_archive(args.output, args.count)
    print(f"Generated {args.count} admissions in {archive}")


if __name__ == "__main__":
    main()
