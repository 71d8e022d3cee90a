"""
Unit tests for the lifecycle payload codec stored in case notes.
"""
import json
from datetime import date, datetime, timezone as dt_timezone

import pytest

from api.exceptions import ValidationError
from api.models.cases import CaseStatus, DutyType, LifecyclePayload
from api.services import status_codec


class TestDecode:
    @pytest.mark.parametrize("notes", [None, "", "   ", "not json", "[1, 2]", "42", '"text"', "{broken"])
    def test_absent_or_corrupt_notes_decode_to_none(self, notes):
        assert status_codec.decode(notes) is None

    def test_decodes_known_fields(self):
        notes = json.dumps({
            "case_status": "triaged",
            "approved_by": "Dr Smith",
            "approved_at": "2025-01-12T10:00:00+00:00",
            "clinical_notes": "Sprained ankle",
        })
        payload = status_codec.decode(notes)
        assert payload.case_status == CaseStatus.TRIAGED
        assert payload.approved_by == "Dr Smith"
        assert payload.approved_at == datetime(2025, 1, 12, 10, 0, tzinfo=dt_timezone.utc)
        assert payload.clinical_notes == "Sprained ankle"
        assert payload.clinical_notes_updated_at is None

    def test_unknown_keys_are_ignored(self):
        payload = status_codec.decode(json.dumps({"case_status": "assessed", "foo": {"bar": 1}}))
        assert payload.case_status == CaseStatus.ASSESSED
        assert not hasattr(payload, "foo")

    def test_status_is_case_insensitive(self):
        assert status_codec.decode('{"case_status": " IN_REHAB "}').case_status == CaseStatus.IN_REHAB

    def test_invalid_field_is_dropped_and_others_survive(self):
        notes = json.dumps({
            "case_status": "open",
            "approved_at": "yesterday",
            "return_to_work_duty_type": "light",
            "clinical_notes": "Keep",
        })
        payload = status_codec.decode(notes)
        assert payload is not None
        assert payload.case_status is None
        assert payload.approved_at is None
        assert payload.return_to_work_duty_type is None
        assert payload.clinical_notes == "Keep"

    def test_oversized_clinical_notes_decode_to_none(self):
        payload = status_codec.decode(json.dumps({"case_status": "new", "clinical_notes": "x" * 10001}))
        assert payload.clinical_notes is None
        assert payload.case_status == CaseStatus.NEW


class TestEncode:
    def test_round_trip_of_every_set_field(self):
        payload = LifecyclePayload(
            case_status=CaseStatus.RETURN_TO_WORK,
            case_status_updated_at=datetime(2025, 3, 1, 8, 15, 30, 123000, tzinfo=dt_timezone.utc),
            approved_by="leader_001",
            approved_at=datetime(2025, 1, 10, 9, 0, tzinfo=dt_timezone.utc),
            whs_approved_by="whs@example.com",
            whs_approved_at=datetime(2025, 3, 2, 9, 0, tzinfo=dt_timezone.utc),
            clinical_notes="  Cleared for modified duties\nReview in 2 weeks ",
            clinical_notes_updated_at=datetime(2025, 3, 1, 8, 0, tzinfo=dt_timezone.utc),
            return_to_work_duty_type=DutyType.MODIFIED,
            return_to_work_date=date(2025, 3, 3),
        )
        decoded = status_codec.decode(status_codec.encode("", payload))
        assert decoded == payload

    def test_round_trip_restricted_to_set_fields(self):
        payload = LifecyclePayload(case_status=CaseStatus.TRIAGED)
        decoded = status_codec.decode(status_codec.encode("", payload))
        assert decoded.case_status == CaseStatus.TRIAGED
        assert decoded.model_dump(exclude={"case_status"}) == LifecyclePayload().model_dump(exclude={"case_status"})

    def test_encode_does_not_clobber_other_fields(self):
        first = status_codec.encode("", {"clinical_notes": "X"})
        second = status_codec.encode(first, {"case_status": "triaged"})
        decoded = status_codec.decode(second)
        assert decoded.clinical_notes == "X"
        assert decoded.case_status == CaseStatus.TRIAGED

    def test_unset_fields_keep_their_stored_value(self):
        notes = status_codec.encode(None, LifecyclePayload(approved_by="a", case_status=CaseStatus.NEW))
        notes = status_codec.encode(notes, LifecyclePayload(case_status=CaseStatus.ASSESSED))
        decoded = status_codec.decode(notes)
        assert decoded.approved_by == "a"
        assert decoded.case_status == CaseStatus.ASSESSED

    def test_unknown_keys_are_preserved(self):
        notes = json.dumps({"rehab_plan": {"weeks": 6}, "case_status": "new"})
        merged = json.loads(status_codec.encode(notes, {"case_status": "in_rehab"}))
        assert merged["rehab_plan"] == {"weeks": 6}
        assert merged["case_status"] == "in_rehab"

    def test_legacy_free_text_is_preserved(self):
        merged = status_codec.encode("Worker called in, back pain", {"case_status": "triaged"})
        assert json.loads(merged)[status_codec.LEGACY_NOTES_KEY] == "Worker called in, back pain"
        assert status_codec.legacy_notes(merged) == "Worker called in, back pain"
        assert status_codec.decode(merged).case_status == CaseStatus.TRIAGED

    def test_invalid_partial_dict_raises(self):
        with pytest.raises(ValidationError):
            status_codec.encode("", {"case_status": "archived"})


class TestPayloadFrom:
    def test_builds_payload_with_set_fields(self):
        payload = status_codec.payload_from({"clinical_notes": "Ok", "case_status": "triaged"})
        assert payload.case_status == CaseStatus.TRIAGED
        assert payload.model_fields_set == {"clinical_notes", "case_status"}

    def test_oversized_clinical_notes_raise_domain_error(self):
        with pytest.raises(ValidationError) as exc_info:
            status_codec.payload_from({"clinical_notes": "x" * 10001})
        assert "clinical_notes" in exc_info.value.message


class TestCaseStatusOf:
    def test_defaults_to_new(self):
        assert status_codec.case_status_of(None) == CaseStatus.NEW
        assert status_codec.case_status_of("garbage") == CaseStatus.NEW
        assert status_codec.case_status_of('{"clinical_notes": "x"}') == CaseStatus.NEW

    def test_returns_stored_status(self):
        assert status_codec.case_status_of('{"case_status": "closed"}') == CaseStatus.CLOSED
