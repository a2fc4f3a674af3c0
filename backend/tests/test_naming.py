"""Archive folder and file naming."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from serverlease.archive.naming import ArchiveName, sanitize_path_part


def test_sanitize_path_part():
    assert sanitize_path_part("  Team  A: Finals? ") == "Team-A-Finals"


def test_folder_name_includes_version_when_known():
    name = ArchiveName(
        lease_id=7, lease_name="Summer Cup", owner_name="bob", event_date=date(2026, 7, 4)
    )
    assert name.folder_name == "2026/2026-07-04_ID7_[Summer-Cup]_bob-hosted"

    versioned = ArchiveName(
        lease_id=7,
        lease_name="Summer Cup",
        owner_name="bob",
        event_date=date(2026, 7, 4),
        version_tag="1.21",
    )
    assert versioned.folder_name.endswith("_bob-hosted_v1.21")


def test_file_name_uses_configured_zone_and_label():
    name = ArchiveName(
        lease_id=7,
        lease_name="x",
        owner_name="bob",
        event_date=date(2026, 7, 4),
        tz=ZoneInfo("Asia/Tokyo"),
    )
    created = datetime(2026, 7, 4, 15, 30, tzinfo=timezone.utc)

    assert name.file_name(created) == "2026-07-05_00-30.tar.gz"
    assert name.file_name(created, "★") == "[★]_2026-07-05_00-30.tar.gz"


def test_parse_folder_name():
    parsed = ArchiveName.from_folder_name("2026/2026-07-04_ID7_[Summer-Cup]_bob-hosted_v1.21")

    assert parsed is not None
    assert (parsed.lease_id, parsed.lease_name, parsed.owner_name, parsed.version_tag) == (
        7,
        "Summer-Cup",
        "bob",
        "1.21",
    )
    assert ArchiveName.matches_lease("2026/2026-07-04_ID7_[Summer-Cup]_bob-hosted", 7)
    assert not ArchiveName.matches_lease("2026/2026-07-04_ID17_[x]_bob-hosted", 7)
    assert ArchiveName.from_folder_name("misc/notes") is None
