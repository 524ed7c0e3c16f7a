import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.append(str(Path(__file__).resolve().parents[1]))

from backend.application import (
    get_file_entry_service,
    get_user_service,
    reset_record_state,
)
from backend.core.schema import FileEntry, UserProfile

FILE_NO = "GWD/123/2024"

EDITOR = UserProfile(uid="editor-1", name="Editor One", role="editor", is_approved=True)
SUPERVISOR = UserProfile(uid="supervisor-1", name="Anil Kumar", role="supervisor", is_approved=True)
OTHER_SUPERVISOR = UserProfile(uid="supervisor-2", name="Beena Das", role="supervisor", is_approved=True)
VIEWER = UserProfile(uid="viewer-1", name="Viewer", role="viewer", is_approved=True)
PENDING_USER = UserProfile(uid="new-1", name="New Joiner", role="supervisor", is_approved=False)


def sample_entry(file_no: str = FILE_NO) -> FileEntry:
    return FileEntry.model_validate(
        {
            "fileNo": file_no,
            "applicantName": "Panchayat Office",
            "remittanceDetails": [{"amountRemitted": 300000, "dateOfRemittance": "2024-04-01"}],
            "siteDetails": [
                {
                    "nameOfSite": "Borewell-12",
                    "purpose": "BWC",
                    "workStatus": "Work in Progress",
                    "supervisorUid": SUPERVISOR.uid,
                    "supervisorName": SUPERVISOR.name,
                    "estimateAmount": 150000,
                },
                {
                    "nameOfSite": "Borewell-13",
                    "purpose": "BWC",
                    "workStatus": "Work Order Issued",
                    "supervisorUid": OTHER_SUPERVISOR.uid,
                    "supervisorName": OTHER_SUPERVISOR.name,
                    "estimateAmount": 120000,
                },
            ],
            "paymentDetails": [
                {"dateOfPayment": "2024-06-01", "contractorsPayment": 50000, "gst": 9000, "revenueHead": 500}
            ],
            "fileStatus": "Work Initiated",
        }
    )


@pytest.fixture(autouse=True)
def reset_state():
    reset_record_state()
    yield
    reset_record_state()


@pytest.fixture()
def seeded():
    users = get_user_service()
    for user in (EDITOR, SUPERVISOR, OTHER_SUPERVISOR, VIEWER, PENDING_USER):
        users.save_user(user)
    return get_file_entry_service().create_file_entry(sample_entry(), EDITOR)


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("EXPORTS_ROOT", str(tmp_path / "exports"))
    monkeypatch.setenv("RECORDS_STORE", "memory")
    from backend.app import create_app

    app = create_app()
    with TestClient(app) as test_client:
        yield test_client


def as_user(user: UserProfile) -> dict[str, str]:
    return {"X-User-Uid": user.uid}


def site_payload(entry: FileEntry, name: str, **changes) -> dict:
    site = entry.find_site(None, name)
    assert site is not None
    return {**site.to_payload(), **changes}
