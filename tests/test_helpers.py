"""Pure formatting and scheduling helpers."""
from datetime import datetime, timedelta, timezone

import pytest

from leadrelay.db.models import Client
from leadrelay.services import nps_service, stripe_service, subscription_service, trial_reminder_service
from leadrelay.services.weekly_summary_service import WeeklyStats, format_weekly_sms, is_due
from leadrelay.utils.dates import parse_hour, sunday_weekday
from leadrelay.utils.normalization import (
    format_phone,
    is_valid_email,
    mask_phone,
    normalize_email,
    normalize_name,
    normalize_phone,
    slugify,
)
from leadrelay.utils.templates import render_template


class TestNormalization:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("4035551234", "+14035551234"),
            ("(403) 555-1234", "+14035551234"),
            ("1-403-555-1234", "+14035551234"),
            ("+1 403 555 1234", "+14035551234"),
            ("", None),
            (None, None),
        ],
    )
    def test_normalize_phone(self, raw, expected):
        assert normalize_phone(raw) == expected

    @pytest.mark.parametrize("raw", ["555-1234", "+44 20 7946 0958", "24035551234"])
    def test_normalize_phone_rejects(self, raw):
        with pytest.raises(ValueError):
            normalize_phone(raw)

    def test_email_and_name(self):
        assert normalize_email("  Dana@Example.COM ") == "dana@example.com"
        assert normalize_email("") is None
        assert is_valid_email("dana@example.com")
        assert not is_valid_email("dana@example")
        assert normalize_name("  Dana   Owner ") == "Dana Owner"

    def test_display_helpers(self):
        assert mask_phone("+14035551234") == "+1403***1234"
        assert mask_phone("12345") == "***"
        assert format_phone("+14035551234") == "(403) 555-1234"
        assert format_phone("+442079460958") == "+442079460958"
        assert slugify("  Front Desk / Dispatch ") == "front_desk_dispatch"


class TestDates:
    def test_sunday_is_zero(self):
        sunday = datetime(2026, 3, 15, tzinfo=timezone.utc)
        assert sunday.strftime("%A") == "Sunday"
        assert sunday_weekday(sunday) == 0
        assert sunday_weekday(sunday + timedelta(days=6)) == 6

    def test_parse_hour(self):
        assert parse_hour("09:30") == 9
        assert parse_hour(None) == 8
        assert parse_hour("soon") == 8


class TestTemplates:
    def test_placeholders(self):
        assert render_template("custom", {"name": "Pat", "gone": None}, "Hi {{name}}{{gone}} {{missing}}") == "Hi Pat {{missing}}"

    def test_default_template(self):
        body = render_template("payment_owner_notice", {"amount": "$10.00", "customerName": "Pat"})
        assert body == "Payment received: $10.00 from Pat"


class TestBilling:
    @pytest.mark.parametrize(
        "cents, expected",
        [(123456, "$1,234.56"), (5, "$0.05"), (0, "$0.00"), (-2500, "-$25.00")],
    )
    def test_format_amount(self, cents, expected):
        assert stripe_service.format_amount(cents) == expected

    def test_payment_message(self):
        assert stripe_service.generate_payment_message(5000, "https://pay") == (
            "Hi! Your balance of $50.00 is ready. Pay securely here: https://pay"
        )
        assert "was due 3 days ago" in stripe_service.generate_payment_message(5000, "https://pay", 3)

    @pytest.mark.parametrize(
        "stripe_status, expected",
        [
            ("active", "active"),
            ("trialing", "trialing"),
            ("past_due", "past_due"),
            ("incomplete", "canceled"),
            ("incomplete_expired", "canceled"),
            ("something_new", "canceled"),
            (None, "canceled"),
        ],
    )
    def test_map_stripe_status(self, stripe_status, expected):
        assert subscription_service.map_stripe_status(stripe_status) == expected

    @pytest.mark.parametrize(
        "days_left, day_number, subject",
        [
            (0, 14, "Acme - Your trial ends today"),
            (2, 12, "Acme - 2 days left in your trial"),
            (7, 7, "Acme - How's your first week going?"),
        ],
    )
    def test_trial_email_subjects(self, days_left, day_number, subject):
        got, body = trial_reminder_service.format_trial_email("Acme", "Dana <script>", days_left, day_number)
        assert got == subject
        assert "Dana &lt;script&gt;" in body

    def test_nps_message(self):
        assert nps_service.survey_message("Pat", "Acme").startswith("Hi Pat! How was your experience with Acme?")
        assert nps_service.survey_message(None, "Acme").startswith("Hi! How was")


class TestWeeklySummary:
    def test_is_due_needs_matching_hour(self):
        client = Client(weekly_summary_time="09:00", last_weekly_summary_at=None)
        assert is_due(client, datetime(2026, 3, 15, 9, 5, tzinfo=timezone.utc))
        assert not is_due(client, datetime(2026, 3, 15, 10, 0, tzinfo=timezone.utc))

    def test_is_due_waits_six_days(self):
        now = datetime(2026, 3, 15, 9, 0, tzinfo=timezone.utc)
        client = Client(weekly_summary_time="09:00", last_weekly_summary_at=now - timedelta(days=5))
        assert not is_due(client, now)
        client.last_weekly_summary_at = now - timedelta(days=6)
        assert is_due(client, now)

    def test_sms_body(self):
        stats = WeeklyStats(leads_captured=4, messages_sent=12, appointments=0, top_team_member="Riley", top_team_member_resolved=3)
        body = format_weekly_sms("Acme", stats, "https://app/d")
        assert body.splitlines()[0] == "Weekly Recap for Acme"
        assert "appointments" not in body
        assert "Top: Riley (3 resolved)" in body
        assert body.endswith("Full stats: https://app/d")
