from datetime import datetime, timezone

import pytest

from conftest import EDITOR, FILE_NO, OTHER_SUPERVISOR, SUPERVISOR, VIEWER, sample_entry, site_payload

from backend.application import (
    finalise_entry,
    get_file_entry_service,
    get_pending_update_service,
    get_record_repository,
    get_user_service,
)
from backend.core.errors import (
    ConflictError,
    NoChangesError,
    NotFoundError,
    PermissionDeniedError,
    StaleUpdateError,
    ValidationError,
)
from backend.core.schema import PendingUpdate, SiteDetail, UserProfile
from backend.domain import DEFAULT_REJECTION_NOTE, can_transition, ensure_transition


def _submit_completion(entry, user=SUPERVISOR):
    proposal = site_payload(entry, "Borewell-12", workStatus="Work Completed", dateOfCompletion="2025-03-15")
    return get_pending_update_service().submit_update(FILE_NO, [proposal], user)


def test_transition_table():
    assert can_transition("pending", "approved")
    assert can_transition("pending", "rejected")
    assert can_transition("pending", "supervisor-unassigned")
    assert not can_transition("rejected", "approved")
    assert not can_transition("supervisor-unassigned", "pending")
    with pytest.raises(ConflictError):
        ensure_transition("u1", "approved", "rejected")


def test_finalise_entry_assigns_ids_and_totals():
    entry = finalise_entry(sample_entry(), None)

    assert all(site.site_id for site in entry.site_details)
    assert [site.version for site in entry.site_details] == [0, 0]
    assert entry.payment_details[0].total_payment_per_entry == 59000
    assert entry.total_remittance == 300000
    assert entry.total_payment_all_entries == 59000
    assert entry.overall_balance == 241000
    assert entry.assigned_supervisor_uids == [SUPERVISOR.uid, OTHER_SUPERVISOR.uid]


def test_finalise_entry_bumps_version_only_for_changed_sites():
    first = finalise_entry(sample_entry(), None)
    edited = first.model_copy(deep=True)
    edited.site_details[0].work_remarks = "Casing lowered"

    second = finalise_entry(edited, first)

    assert [site.version for site in second.site_details] == [1, 0]
    assert [site.site_id for site in second.site_details] == [site.site_id for site in first.site_details]


def test_finalise_entry_rejects_duplicate_site_names():
    entry = sample_entry()
    entry.site_details[1].name_of_site = "Borewell-12"
    with pytest.raises(ValidationError):
        finalise_entry(entry, None)


def test_submit_creates_pending_update(seeded):
    update = _submit_completion(seeded)

    assert update.status == "pending"
    assert update.submitted_by_uid == SUPERVISOR.uid
    assert update.submitted_by_name == "Anil Kumar"
    assert update.submitted_at.tzinfo is not None
    site_id = seeded.site_details[0].site_id
    assert update.base_versions == {site_id: 0}
    assert get_pending_update_service().has_pending_update_for_file(FILE_NO, SUPERVISOR.uid)


def test_submit_requires_identity(seeded):
    nameless = SUPERVISOR.model_copy(update={"name": ""})
    with pytest.raises(ValidationError):
        _submit_completion(seeded, user=nameless)


def test_submit_requires_sites(seeded):
    with pytest.raises(ValidationError):
        get_pending_update_service().submit_update(FILE_NO, [], SUPERVISOR)


def test_submit_rejects_unassigned_supervisor(seeded):
    with pytest.raises(PermissionDeniedError):
        _submit_completion(seeded, user=OTHER_SUPERVISOR)


def test_submit_rejects_non_supervisor(seeded):
    with pytest.raises(PermissionDeniedError):
        _submit_completion(seeded, user=VIEWER)


def test_submit_rejects_unknown_file_and_site(seeded):
    service = get_pending_update_service()
    with pytest.raises(NotFoundError):
        service.submit_update("GWD/999/2024", [{"nameOfSite": "Borewell-12"}], SUPERVISOR)
    with pytest.raises(NotFoundError):
        service.submit_update(FILE_NO, [{"nameOfSite": "Borewell-99"}], SUPERVISOR)


def test_submit_rejects_invalid_site(seeded):
    proposal = site_payload(seeded, "Borewell-12", workStatus="Work Completed")
    with pytest.raises(ValidationError):
        get_pending_update_service().submit_update(FILE_NO, [proposal], SUPERVISOR)


def test_second_pending_update_for_same_file_conflicts(seeded):
    _submit_completion(seeded)
    with pytest.raises(ConflictError):
        _submit_completion(seeded)


def test_resubmission_after_rejection_creates_new_record(seeded):
    service = get_pending_update_service()
    first = _submit_completion(seeded)
    service.reject_update(first.id, EDITOR, "Missing photo evidence")

    second = _submit_completion(seeded)

    assert second.id != first.id
    assert service.get_update(first.id).status == "rejected"
    assert service.get_update(second.id).status == "pending"


def test_list_is_latest_first(seeded, monkeypatch):
    service = get_pending_update_service()
    times = iter(
        [
            datetime(2025, 3, 1, tzinfo=timezone.utc),
            datetime(2025, 3, 2, tzinfo=timezone.utc),
        ]
    )
    monkeypatch.setattr(service, "_clock", lambda: next(times))
    older = _submit_completion(seeded)
    other = site_payload(seeded, "Borewell-13", workRemarks="Rig arrived")
    newer = service.submit_update(FILE_NO, [other], OTHER_SUPERVISOR)

    assert [item.id for item in service.list_pending_updates()] == [newer.id, older.id]
    assert [item.id for item in service.list_pending_updates(FILE_NO, submitted_by_uid=SUPERVISOR.uid)] == [older.id]
    assert service.list_pending_updates("GWD/000/2020") == []


def test_get_update_not_found():
    with pytest.raises(NotFoundError):
        get_pending_update_service().get_update("missing")


def test_review_reports_changed_fields(seeded):
    update = _submit_completion(seeded)

    reviews = get_pending_update_service().review_update(update.id)

    assert len(reviews) == 1
    changes = {change.field: change for change in reviews[0].changes}
    assert set(changes) == {"workStatus", "dateOfCompletion"}
    assert changes["workStatus"].old_value == "Work in Progress"
    assert changes["workStatus"].new_value == "Work Completed"
    assert changes["dateOfCompletion"].old_value == ""
    assert changes["dateOfCompletion"].new_value == "15/03/2025"
    assert changes["dateOfCompletion"].label == "Date of Completion"


def test_review_without_changes(seeded):
    proposal = site_payload(seeded, "Borewell-12")
    update = get_pending_update_service().submit_update(FILE_NO, [proposal], SUPERVISOR)
    with pytest.raises(NoChangesError):
        get_pending_update_service().review_update(update.id)


def test_reject_defaults_notes_and_refuses_twice(seeded):
    service = get_pending_update_service()
    update = _submit_completion(seeded)

    rejected = service.reject_update(update.id, EDITOR, "   ")

    assert rejected.status == "rejected"
    assert rejected.notes == DEFAULT_REJECTION_NOTE
    assert rejected.reviewed_by_uid == EDITOR.uid
    with pytest.raises(ConflictError):
        service.reject_update(update.id, EDITOR, "again")


def test_reject_requires_editor(seeded):
    update = _submit_completion(seeded)
    with pytest.raises(PermissionDeniedError):
        get_pending_update_service().reject_update(update.id, SUPERVISOR)


def test_prepare_approval_merges_proposal(seeded):
    update = _submit_completion(seeded)

    context = get_pending_update_service().prepare_approval(update.id, EDITOR)

    assert context.redirect_to == (
        f"/dashboard/data-entry?fileNo=GWD%2F123%2F2024&approveUpdateId={update.id}"
    )
    site = context.merged_entry["siteDetails"][0]
    assert site["workStatus"] == "Work Completed"
    assert site["dateOfCompletion"] == "2025-03-15"
    assert site["supervisorUid"] == SUPERVISOR.uid
    assert context.merged_entry["siteDetails"][1]["workStatus"] == "Work Order Issued"


def test_approve_commits_entry_and_status_together(seeded):
    service = get_pending_update_service()
    update = _submit_completion(seeded)

    approved, entry = service.approve_update(update.id, EDITOR)

    assert approved.status == "approved"
    assert approved.reviewed_by_uid == EDITOR.uid
    stored = get_file_entry_service().require_file_entry(FILE_NO)
    assert stored.site_details[0].work_status == "Work Completed"
    assert stored.site_details[0].version == 1
    assert entry.site_details[0].date_of_completion == "2025-03-15"
    assert service.get_update(update.id).status == "approved"
    with pytest.raises(ConflictError):
        service.approve_update(update.id, EDITOR)


def test_approve_applies_file_level_updates(seeded):
    service = get_pending_update_service()
    proposal = site_payload(seeded, "Borewell-12", workRemarks="Done")
    update = service.submit_update(
        FILE_NO, [proposal], SUPERVISOR, {"fileStatus": "Fully Completed", "remarks": "All sites finished"}
    )

    _, entry = service.approve_update(update.id, EDITOR)

    assert entry.file_status == "Fully Completed"
    assert entry.remarks == "All sites finished"


def test_approve_refuses_stale_update(seeded):
    service = get_pending_update_service()
    update = _submit_completion(seeded)
    edited = seeded.model_copy(deep=True)
    edited.site_details[0].work_remarks = "Edited by office"
    get_file_entry_service().save_file_entry(edited, EDITOR)

    with pytest.raises(StaleUpdateError):
        service.approve_update(update.id, EDITOR)
    assert service.get_update(update.id).status == "pending"


def test_approve_fails_when_site_was_removed(seeded):
    service = get_pending_update_service()
    update = _submit_completion(seeded)
    trimmed = seeded.model_copy(update={"site_details": seeded.site_details[1:]}, deep=True)
    get_file_entry_service().save_file_entry(trimmed, EDITOR)

    with pytest.raises(NotFoundError):
        service.approve_update(update.id, EDITOR)
    with pytest.raises(NotFoundError):
        service.review_update(update.id)
    assert service.get_update(update.id).status == "pending"


def test_check_assignment_leaves_assigned_update_alone(seeded):
    update = _submit_completion(seeded)
    checked = get_pending_update_service().check_assignment(update.id)
    assert checked.status == "pending"


def test_check_assignment_flags_reassigned_site(seeded):
    service = get_pending_update_service()
    update = _submit_completion(seeded)
    edited = seeded.model_copy(deep=True)
    edited.site_details[0].supervisor_uid = OTHER_SUPERVISOR.uid
    edited.site_details[0].supervisor_name = OTHER_SUPERVISOR.name
    get_file_entry_service().save_file_entry(edited, EDITOR)

    checked = service.check_assignment(update.id)

    assert checked.status == "supervisor-unassigned"
    assert "Borewell-12" in checked.notes
    assert [item.id for item in service.reassignment_queue()] == [update.id]
    assert service.actionable_updates() == []


def test_role_change_orphans_pending_updates(seeded):
    service = get_pending_update_service()
    update = _submit_completion(seeded)

    get_user_service().update_role(SUPERVISOR.uid, "viewer", EDITOR)

    assert service.get_update(update.id).status == "supervisor-unassigned"
    entry = get_file_entry_service().require_file_entry(FILE_NO)
    assert entry.site_details[0].supervisor_uid is None
    assert entry.assigned_supervisor_uids == [OTHER_SUPERVISOR.uid]
    # the orphaned update already covers the cleared site
    assert [item.id for item in service.reassignment_queue()] == [update.id]


def test_role_change_without_pending_update_records_notice(seeded):
    service = get_pending_update_service()

    get_user_service().update_role(OTHER_SUPERVISOR.uid, "viewer", EDITOR)

    queue = service.reassignment_queue()
    assert len(queue) == 1
    notice = queue[0]
    assert notice.submitted_by_name == "Editor One (System)"
    assert notice.notes == "Supervisor Beena Das removed from site while role was changed."
    assert notice.updated_site_details[0].name_of_site == "Borewell-13"


def test_role_change_requires_editor(seeded):
    with pytest.raises(PermissionDeniedError):
        get_user_service().update_role(OTHER_SUPERVISOR.uid, "viewer", SUPERVISOR)


def test_detect_orphans_skips_assigned_updates(seeded):
    service = get_pending_update_service()
    _submit_completion(seeded)
    assert service.detect_orphans() == []


def test_subscription_is_role_scoped(seeded):
    service = get_pending_update_service()
    editor_feed: list[list] = []
    supervisor_feed: list[list] = []
    viewer_feed: list[list] = []
    unsubscribe_editor = service.subscribe_pending_updates(editor_feed.append, EDITOR)
    service.subscribe_pending_updates(supervisor_feed.append, SUPERVISOR)
    service.subscribe_pending_updates(viewer_feed.append, VIEWER)

    update = _submit_completion(seeded)
    service.reject_update(update.id, EDITOR, "Missing photo evidence")
    unsubscribe_editor()
    _submit_completion(seeded)

    assert editor_feed[0] == []
    assert [item.id for item in editor_feed[1]] == [update.id]
    assert editor_feed[-1] == []
    assert len(editor_feed) == 3
    assert sorted(item.status for item in supervisor_feed[-1]) == ["pending", "rejected"]
    assert viewer_feed == [[]]


def test_repository_copies_are_isolated(seeded):
    update = _submit_completion(seeded)
    fetched = get_record_repository().get_pending_update(update.id)
    fetched.notes = "mutated"
    assert get_record_repository().get_pending_update(update.id).notes is None


def test_user_registration_and_approval():
    users = get_user_service()
    users.save_user(EDITOR)

    registered = users.register_user("u-9", "Field Officer", "fo@example.org")

    assert registered.role == "viewer"
    assert registered.is_approved is False
    approved = users.update_approval("u-9", True, EDITOR)
    assert approved.is_approved is True
    with pytest.raises(ConflictError):
        users.register_user("u-9", "Field Officer")
    with pytest.raises(ValidationError):
        users.update_role("u-9", "admin", EDITOR)
    assert isinstance(users.get_user("u-9"), UserProfile)


def test_partial_proposal_keeps_canonical_fields(seeded):
    service = get_pending_update_service()
    update = service.submit_update(FILE_NO, [{"nameOfSite": "Borewell-12", "workRemarks": "Done"}], SUPERVISOR)

    stored_site = update.updated_site_details[0]
    assert stored_site.work_status == "Work in Progress"
    assert stored_site.purpose == "BWC"
    assert stored_site.site_id == seeded.site_details[0].site_id

    reviews = service.review_update(update.id)
    assert [change.field for change in reviews[0].changes] == ["workRemarks"]

    # documents read back from a store mark every field as set
    reloaded = PendingUpdate.model_validate(update.to_document())
    merged = service.merge_update(reloaded, get_file_entry_service().require_file_entry(FILE_NO))
    assert merged.site_details[0].work_status == "Work in Progress"
    assert merged.site_details[0].estimate_amount == 150000

    _, entry = service.approve_update(update.id, EDITOR)
    site = entry.site_details[0]
    assert (site.work_status, site.purpose, site.estimate_amount, site.work_remarks) == (
        "Work in Progress",
        "BWC",
        150000,
        "Done",
    )


def test_partial_proposal_is_validated_against_canonical_site(seeded):
    completed = seeded.model_copy(deep=True)
    completed.site_details[0].work_status = "Work Completed"
    completed.site_details[0].date_of_completion = "2025-03-15"
    get_file_entry_service().save_file_entry(completed, EDITOR)

    with pytest.raises(ValidationError):
        get_pending_update_service().submit_update(
            FILE_NO, [{"nameOfSite": "Borewell-12", "dateOfCompletion": None}], SUPERVISOR
        )


def test_merge_failure_is_a_validation_error(seeded):
    site = seeded.site_details[0]
    broken = SiteDetail.model_construct(**{**site.model_dump(), "work_status": "Work Completed", "date_of_completion": None})
    update = PendingUpdate(
        file_no=FILE_NO,
        updated_site_details=[broken],
        submitted_by_uid=SUPERVISOR.uid,
        submitted_by_name=SUPERVISOR.name,
        base_versions={site.site_id: site.version},
    )
    get_record_repository().add_pending_update(update)
    service = get_pending_update_service()

    with pytest.raises(ValidationError):
        service.prepare_approval(update.id, EDITOR)
    with pytest.raises(ValidationError):
        service.approve_update(update.id, EDITOR)
    assert service.get_update(update.id).status == "pending"
