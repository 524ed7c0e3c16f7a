"""Field-level comparison of canonical sites against supervisor proposals."""
from __future__ import annotations

from typing import Any

from backend.core.dates import format_date
from backend.core.errors import NoChangesError, NotFoundError
from backend.core.schema import FileEntry, PendingUpdate, SiteDetail
from backend.domain import FieldChange, SiteReview

# Bookkeeping keys that never count as a proposed change.
IGNORED_FIELDS = frozenset({"siteId", "version", "isPending"})

FIELD_LABELS: dict[str, str] = {
    "nameOfSite": "Name of Site",
    "purpose": "Purpose",
    "latitude": "Latitude",
    "longitude": "Longitude",
    "diameter": "Diameter (mm)",
    "totalDepth": "TD (m)",
    "casingPipeUsed": "Casing Pipe (m)",
    "outerCasingPipe": "Outer Casing (m)",
    "innerCasingPipe": "Inner Casing (m)",
    "yieldDischarge": "Discharge (LPH)",
    "waterLevel": "Water Level (m)",
    "drillingRemarks": "Drilling Remarks",
    "pumpDetails": "Pump Details",
    "waterTankCapacity": "Water Tank (L)",
    "noOfTapConnections": "Tap Connections",
    "noOfBeneficiary": "Beneficiaries",
    "dateOfCompletion": "Date of Completion",
    "totalExpenditure": "Expenditure (₹)",
    "workStatus": "Work Status",
    "workRemarks": "Work Remarks",
    "zoneDetails": "Zone Details (m)",
    "typeOfRig": "Type of Rig",
    "surveyOB": "Actual OB (m)",
    "surveyPlainPipe": "Actual Plain Pipe (m)",
    "surveySlottedPipe": "Actual Slotted Pipe (m)",
    "pilotDrillingDepth": "Pilot Drilling Depth (m)",
    "pumpingLineLength": "Pumping Line (m)",
    "deliveryLineLength": "Delivery Line (m)",
    "supervisorName": "Supervisor",
}


def normalize_value(key: str, value: Any) -> str:
    """String form used for both comparison and display."""

    if "date" in key.lower():
        return format_date(value)
    if value is None:
        return ""
    return str(value).strip()


def compare_sites(original: SiteDetail, proposed: SiteDetail) -> list[FieldChange]:
    before = original.to_document()
    after = proposed.to_document()

    keys = list(after)
    keys.extend(key for key in before if key not in after)

    changes: list[FieldChange] = []
    for key in keys:
        if key in IGNORED_FIELDS:
            continue
        old_value = normalize_value(key, before.get(key))
        new_value = normalize_value(key, after.get(key))
        if old_value != new_value:
            changes.append(
                FieldChange(
                    field=key,
                    label=FIELD_LABELS.get(key, key),
                    old_value=old_value,
                    new_value=new_value,
                )
            )
    return changes


def match_site(entry: FileEntry, proposed: SiteDetail) -> SiteDetail | None:
    """Find the canonical site for a proposal: stable id first, then name."""

    return entry.find_site(proposed.site_id, proposed.name_of_site)


def build_review(update: PendingUpdate, entry: FileEntry | None) -> list[SiteReview]:
    """Diff every proposed site of ``update`` against ``entry``.

    Raises :class:`NotFoundError` when the file or a proposed site cannot be
    matched and :class:`NoChangesError` when nothing differs, so callers never
    present an empty review as a successful diff.
    """

    if entry is None:
        raise NotFoundError(f"file entry {update.file_no} not found")

    reviews: list[SiteReview] = []
    for proposed in update.updated_site_details:
        original = match_site(entry, proposed)
        if original is None:
            raise NotFoundError(
                f"could not find original site data for '{proposed.name_of_site}' in file "
                f"{update.file_no}; the site might be new or its name was changed"
            )
        reviews.append(
            SiteReview(
                name_of_site=proposed.name_of_site,
                site_id=original.site_id,
                changes=compare_sites(original, proposed),
            )
        )

    if not any(review.changes for review in reviews):
        raise NoChangesError(f"no changes found in update {update.id}")
    return reviews
