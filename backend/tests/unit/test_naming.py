import pytest

from scanattend.domain.common import naming


@pytest.mark.parametrize(
	"raw, expected",
	[
		("Test Company", "test_company"),
		("Annual Meeting", "annual_meeting"),
		("  Acme -- Corp!! ", "_acme_corp_"),
		("Café Zürich", "caf_z_rich"),
		("2024 Gala", "2024_gala"),
		("already_clean", "already_clean"),
		("a___b", "a_b"),
	],
)
def test_sanitize_examples(raw, expected):
	assert naming.sanitize(raw) == expected


@pytest.mark.parametrize("raw", ["Test Company", "  x  y ", "ÄÖÜ", "a-b_c.d", "", "___", "Robert'); DROP TABLE x;--"])
def test_sanitize_is_idempotent_and_deterministic(raw):
	once = naming.sanitize(raw)
	assert naming.sanitize(once) == once
	assert naming.sanitize(raw) == once


def test_sanitize_output_is_storage_safe():
	value = naming.sanitize('Robert"); DROP TABLE students; --')
	assert set(value) <= set("abcdefghijklmnopqrstuvwxyz0123456789_")
	assert "__" not in value


def test_partition_id_prefix():
	assert naming.partition_id("Test Company") == "org_test_company"


def test_event_table_names():
	assert naming.attendance_table("Annual Meeting") == "annual_meeting_attendance"
	assert naming.verification_table("Annual Meeting") == "annual_meeting_verification"
	tables = naming.event_tables("Annual Meeting")
	assert tables == naming.EventTableNames("annual_meeting_attendance", "annual_meeting_verification")


def test_quote_and_qualified():
	assert naming.quote("2024_gala_attendance") == '"2024_gala_attendance"'
	assert naming.quote('bad"name') == '"bad_name"'
	assert naming.qualified("events", "org_acme") == '"org_acme"."events"'
	assert naming.qualified("organizations") == '"organizations"'


def test_index_name():
	assert naming.index_name("gala_attendance", "participant_id") == "idx_gala_attendance_participant_id"


def test_long_index_names_stay_distinct_within_identifier_limit():
	table = "e" * 50 + "_verification"
	by_participant = naming.index_name(table, "participant_id")
	by_time = naming.index_name(table, "verified_at")

	assert len(by_participant) <= naming.MAX_IDENTIFIER_LENGTH
	assert len(by_time) <= naming.MAX_IDENTIFIER_LENGTH
	assert by_participant != by_time
	assert by_participant == naming.index_name(table, "participant_id")


@pytest.mark.parametrize(
	"name, expected",
	[("Test Company", True), ("東京 ★", False), ("!!!", False), ("2024", True), ("Café", True)],
)
def test_has_identifier_chars(name, expected):
	assert naming.has_identifier_chars(name) is expected


def test_fits_identifier():
	assert naming.fits_identifier("x" * 63)
	assert not naming.fits_identifier("x" * 64)
