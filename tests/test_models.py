"""Tests for payload parsing into the immutable data model."""

from __future__ import annotations

from datetime import datetime, timezone

from lead_pipeline import models
from lead_pipeline.models import (
    Activity,
    AssignmentActivity,
    CallActivity,
    Lead,
    Opportunity,
    StatusChangeActivity,
    Task,
    TeamMember,
    VehicleRef,
    parse_activity,
)
from lead_pipeline.normalization import format_timestamp, parse_amount, parse_timestamp

from conftest import make_lead_payload


class TestLead:
    def test_camel_case_payload(self):
        lead = Lead.from_payload(
            make_lead_payload(
                "L1",
                "Carla",
                isDuplicate=True,
                estimatedValue="12500000",
                lastContactAt="2025-11-01T10:00:00.000Z",
                assignedTo={"id": "u1", "name": "Ana Ruiz"},
                vehicle={"id": "V1", "title": "Kia Rio", "brand": "Kia", "model": {"name": "Rio"}},
            )
        )
        assert lead.is_duplicate
        assert lead.estimated_value == 12_500_000
        assert lead.last_contact_at == datetime(2025, 11, 1, 10, tzinfo=timezone.utc)
        assert lead.assigned_to == TeamMember(id="u1", name="Ana Ruiz")
        assert lead.vehicle == VehicleRef(id="V1", title="Kia Rio", brand="Kia", model="Rio")

    def test_malformed_optionals_degrade(self):
        lead = Lead.from_payload(
            make_lead_payload("L1", "Carla", createdAt="yesterday", assignedTo="u1", vehicle=[])
        )
        assert lead.created_at is None
        assert lead.assigned_to is None
        assert lead.vehicle is None


class TestTeamMember:
    def test_names(self):
        assert TeamMember(id="u1", name="Ana Ruiz").first_name == "Ana"
        assert TeamMember(id="u1").display_name == "User"

    def test_missing_id(self):
        assert TeamMember.from_payload({"name": "Ana"}) is None


class TestParseActivity:
    def test_variant_by_type(self):
        call = parse_activity({"id": "a", "type": "call", "content": "Rang"})
        assert isinstance(call, CallActivity)
        assert call.type == "CALL"

    def test_status_change_metadata(self):
        activity = parse_activity({
            "id": "a",
            "type": "STATUS_CHANGE",
            "metadata": {"oldStatus": "NEW", "newStatus": "LOST"},
        })
        assert isinstance(activity, StatusChangeActivity)
        assert (activity.old_status, activity.new_status) == ("NEW", "LOST")

    def test_assignment_metadata(self):
        activity = parse_activity({
            "id": "a",
            "type": "ASSIGNMENT",
            "metadata": {"newAssigneeId": "u2", "assignedToName": "Ben"},
            "author": {"id": "u1", "name": "Ana"},
        })
        assert isinstance(activity, AssignmentActivity)
        assert activity.new_assignee_id == "u2"
        assert activity.old_assignee_id is None
        assert activity.author.name == "Ana"

    def test_test_drive_variant(self):
        # Referenced through the module so the runner does not collect it.
        activity = parse_activity({"id": "a", "type": "TEST_DRIVE", "content": "Sat 10:00"})
        assert type(activity) is models.TestDriveActivity
        assert activity.content == "Sat 10:00"

    def test_unknown_type_falls_back(self):
        activity = parse_activity({"id": "a", "type": "SMS"}, lead_id="L1")
        assert type(activity) is Activity
        assert activity.lead_id == "L1"


class TestTaskAndOpportunity:
    def test_task_defaults(self):
        task = Task.from_payload({"id": "t", "title": "Call", "dueAt": "2025-11-05T12:00:00Z"})
        assert task.priority == "MEDIUM"
        assert not task.is_completed

    def test_opportunity_defaults(self):
        opp = Opportunity.from_payload({"id": "o", "estimatedValue": 1000})
        assert opp.status == "OPEN"
        assert opp.probability == 0

    def test_dealer_listing_embeds_lead(self):
        opp = Opportunity.from_payload(
            {"id": "o", "estimatedValue": 1000, "lead": {"id": "L7", "name": " Ines "}}
        )
        assert (opp.lead_id, opp.lead_name) == ("L7", "Ines")


class TestNormalization:
    def test_parse_amount(self):
        assert parse_amount("$ 7,500") == 7500
        assert parse_amount(True) is None
        assert parse_amount("n/a") is None

    def test_timestamp_round_trip_shape(self):
        parsed = parse_timestamp("2025-11-05T12:00:00")
        assert parsed.tzinfo is timezone.utc
        assert format_timestamp(parsed) == "2025-11-05T12:00:00Z"
