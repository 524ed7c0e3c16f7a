from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Literal, get_args
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, constr, field_validator, model_validator
from pydantic.alias_generators import to_camel

SiteWorkStatus = Literal[
    "Under Process",
    "Addl. AS Awaited",
    "To be Refunded",
    "Awaiting Dept. Rig",
    "To be Tendered",
    "TS Pending",
    "Tendered",
    "Selection Notice Issued",
    "Work Order Issued",
    "Work Initiated",
    "Work in Progress",
    "Work Failed",
    "Work Completed",
    "Bill Prepared",
    "Payment Completed",
    "Utilization Certificate Issued",
]

SitePurpose = Literal[
    "BWC",
    "TWC",
    "FPW",
    "BW Dev",
    "TW Dev",
    "FPW Dev",
    "MWSS",
    "MWSS Ext",
    "Pumping Scheme",
    "MWSS Pump Reno",
    "HPS",
    "HPR",
    "ARS",
]

FileStatus = Literal[
    "File Under Process",
    "Rig Accessibility Inspection",
    "Technical Sanction",
    "Tender Process",
    "Work Initiated",
    "Fully Completed",
    "Partially Completed",
    "Completed Except Disputed",
    "Partially Completed Except Disputed",
    "Fully Disputed",
    "To be Refunded",
    "Bill Preparation",
    "Payments",
    "Utilization Certificate",
    "File Closed",
]

UserRole = Literal["editor", "supervisor", "viewer"]
UpdateStatus = Literal["pending", "approved", "rejected", "supervisor-unassigned"]

SITE_WORK_STATUSES: tuple[str, ...] = get_args(SiteWorkStatus)
SITE_PURPOSES: tuple[str, ...] = get_args(SitePurpose)
FILE_STATUSES: tuple[str, ...] = get_args(FileStatus)
USER_ROLES: tuple[str, ...] = get_args(UserRole)
UPDATE_STATUSES: tuple[str, ...] = get_args(UpdateStatus)

# Sites in these states lose their supervisor when the supervisor role is revoked.
ONGOING_WORK_STATUSES: tuple[str, ...] = ("Work Order Issued", "Work in Progress", "Awaiting Dept. Rig")

COMPLETION_STATUSES = {"Work Completed", "Work Failed"}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _date_to_text(value: Any) -> Any:
    value = _blank_to_none(value)
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return value


class RecordModel(BaseModel):
    """Base for stored documents: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe camelCase form for HTTP and WebSocket responses."""

        return self.model_dump(by_alias=True, mode="json")


class SiteDetail(RecordModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    site_id: str | None = None
    name_of_site: constr(strip_whitespace=True, min_length=1)
    local_self_govt: str | None = None
    constituency: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    purpose: SitePurpose | None = None
    estimate_amount: float | None = None
    remitted_amount: float | None = None
    ts_amount: float | None = None
    additional_as: Literal["Yes", "No"] | None = Field(default="No", alias="additionalAS")
    tender_no: str | None = None
    diameter: str | None = None
    pilot_drilling_depth: str | None = None
    total_depth: float | None = None
    casing_pipe_used: str | None = None
    outer_casing_pipe: str | None = None
    inner_casing_pipe: str | None = None
    yield_discharge: str | None = None
    zone_details: str | None = None
    water_level: str | None = None
    drilling_remarks: str | None = ""
    pump_details: str | None = None
    pumping_line_length: str | None = None
    delivery_line_length: str | None = None
    water_tank_capacity: str | None = None
    no_of_tap_connections: float | None = None
    no_of_beneficiary: str | None = None
    date_of_completion: str | None = None
    type_of_rig: str | None = None
    contractor_name: str | None = None
    supervisor_uid: str | None = None
    supervisor_name: str | None = None
    total_expenditure: float | None = None
    work_status: SiteWorkStatus | None = None
    work_remarks: str | None = ""
    survey_ob: str | None = Field(default=None, alias="surveyOB")
    survey_location: str | None = None
    survey_plain_pipe: str | None = None
    survey_slotted_pipe: str | None = None
    survey_remarks: str | None = None
    version: int = 0

    @field_validator(
        "latitude",
        "longitude",
        "estimate_amount",
        "remitted_amount",
        "ts_amount",
        "total_depth",
        "no_of_tap_connections",
        "total_expenditure",
        "purpose",
        "work_status",
        "additional_as",
        mode="before",
    )
    @classmethod
    def _empty_as_missing(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("date_of_completion", mode="before")
    @classmethod
    def _normalise_date(cls, value: Any) -> Any:
        return _date_to_text(value)

    @model_validator(mode="after")
    def _completion_needs_date(self) -> "SiteDetail":
        if self.work_status in COMPLETION_STATUSES and not self.date_of_completion:
            raise ValueError(f"dateOfCompletion is required when workStatus is '{self.work_status}'")
        return self


class RemittanceDetail(RecordModel):
    amount_remitted: float | None = None
    date_of_remittance: str | None = None
    remitted_account: str | None = None

    @field_validator("amount_remitted", mode="before")
    @classmethod
    def _empty_amount(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("date_of_remittance", mode="before")
    @classmethod
    def _normalise_date(cls, value: Any) -> Any:
        return _date_to_text(value)


class PaymentDetail(RecordModel):
    date_of_payment: str | None = None
    payment_account: str | None = None
    revenue_head: float | None = None
    contractors_payment: float | None = None
    gst: float | None = None
    income_tax: float | None = None
    kbcwb: float | None = None
    refund_to_party: float | None = None
    total_payment_per_entry: float = 0.0
    payment_remarks: str | None = ""

    @field_validator(
        "revenue_head",
        "contractors_payment",
        "gst",
        "income_tax",
        "kbcwb",
        "refund_to_party",
        mode="before",
    )
    @classmethod
    def _empty_amount(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("date_of_payment", mode="before")
    @classmethod
    def _normalise_date(cls, value: Any) -> Any:
        return _date_to_text(value)


class FileLevelUpdates(RecordModel):
    file_status: FileStatus | None = None
    remarks: str | None = None


class FileEntry(RecordModel):
    file_no: constr(strip_whitespace=True, min_length=1)
    applicant_name: constr(strip_whitespace=True, min_length=1)
    phone_no: str | None = None
    secondary_mobile_no: str | None = None
    application_type: str | None = None
    estimate_amount: float | None = None
    assigned_supervisor_uids: list[str] = Field(default_factory=list)
    remittance_details: list[RemittanceDetail] = Field(default_factory=list)
    total_remittance: float = 0.0
    site_details: list[SiteDetail] = Field(min_length=1)
    payment_details: list[PaymentDetail] = Field(default_factory=list)
    total_payment_all_entries: float = 0.0
    overall_balance: float = 0.0
    file_status: FileStatus | None = None
    remarks: str | None = None

    def find_site(self, site_id: str | None, name_of_site: str) -> SiteDetail | None:
        if site_id:
            for site in self.site_details:
                if site.site_id == site_id:
                    return site
        for site in self.site_details:
            if site.name_of_site == name_of_site:
                return site
        return None


class PendingUpdate(RecordModel):
    id: str = Field(default_factory=lambda: uuid4().hex)
    file_no: constr(strip_whitespace=True, min_length=1)
    updated_site_details: list[SiteDetail] = Field(default_factory=list)
    file_level_updates: FileLevelUpdates | None = None
    submitted_by_uid: constr(strip_whitespace=True, min_length=1)
    submitted_by_name: constr(strip_whitespace=True, min_length=1)
    submitted_at: datetime = Field(default_factory=utcnow)
    status: UpdateStatus = "pending"
    notes: str | None = None
    reviewed_by_uid: str | None = None
    reviewed_at: datetime | None = None
    base_versions: dict[str, int] = Field(default_factory=dict)


class UserProfile(RecordModel):
    uid: constr(strip_whitespace=True, min_length=1)
    name: str = ""
    email: str | None = None
    role: UserRole = "viewer"
    is_approved: bool = False
    staff_id: str | None = None
