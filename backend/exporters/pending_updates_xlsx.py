from __future__ import annotations

from pathlib import Path
from typing import Iterable

import pandas as pd

from backend.core.dates import format_date
from backend.core.schema import PendingUpdate

COLUMNS = [
    "File No.",
    "Site Name",
    "Work Status",
    "Submitted By",
    "Submitted On",
    "Status",
    "Notes",
]


def export_pending_updates(path: Path, updates: Iterable[PendingUpdate]) -> Path:
    records = []
    for update in updates:
        for site in update.updated_site_details:
            records.append({
                "File No.": update.file_no,
                "Site Name": site.name_of_site,
                "Work Status": site.work_status or "",
                "Submitted By": update.submitted_by_name,
                "Submitted On": format_date(update.submitted_at),
                "Status": update.status,
                "Notes": update.notes or "",
            })
    df = pd.DataFrame(records, columns=COLUMNS)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_excel(path, index=False, sheet_name="Pending Updates", engine="openpyxl")
    return path
