#!/usr/bin/env python
from __future__ import annotations

import argparse
import json
from pathlib import Path


def build_entry(file_no: str, applicant: str, supervisor_uid: str, supervisor_name: str, sites: int) -> dict:
    site_details = []
    for index in range(1, sites + 1):
        site_details.append(
            {
                "nameOfSite": f"Borewell-{index}",
                "purpose": "BWC",
                "workStatus": "Work in Progress",
                "supervisorUid": supervisor_uid,
                "supervisorName": supervisor_name,
                "estimateAmount": 150000,
                "typeOfRig": "Rotary",
                "workRemarks": "",
            }
        )
    return {
        "fileNo": file_no,
        "applicantName": applicant,
        "applicationType": "Private_Domestic",
        "remittanceDetails": [
            {"amountRemitted": 150000 * sites, "dateOfRemittance": "2024-04-01", "remittedAccount": "SBI"}
        ],
        "siteDetails": site_details,
        "paymentDetails": [],
        "fileStatus": "Work Initiated",
        "remarks": "",
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate a sample file entry JSON document")
    parser.add_argument("--output", required=True, help="output file path (.json)")
    parser.add_argument("--file-no", default="GWD/123/2024", help="file number")
    parser.add_argument("--applicant", default="Panchayat Office", help="applicant name")
    parser.add_argument("--supervisor-uid", default="supervisor-1", help="uid of the assigned supervisor")
    parser.add_argument("--supervisor-name", default="Anil Kumar", help="name of the assigned supervisor")
    parser.add_argument("--sites", type=int, default=1, help="number of sites")
    args = parser.parse_args()

    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    entry = build_entry(args.file_no, args.applicant, args.supervisor_uid, args.supervisor_name, args.sites)
    output.write_text(json.dumps(entry, indent=2), encoding="utf-8")

    print(f"Sample file entry written to: {output}")


if __name__ == "__main__":
    main()
