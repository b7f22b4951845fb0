import csv
import json
import pytest
from datetime import datetime, timezone
from pathlib import Path

from session_ingest import config
from session_ingest.config import RunConfig
from session_ingest.core import SessionIngestApp
from session_ingest.exceptions import InputDirectoryError, OutputDirectoryError
from session_ingest.main import main
from session_ingest.models import IssueKind

UTC = timezone.utc


def run_config(card, out, **kwargs):
    kwargs.setdefault('tz', UTC)
    kwargs.setdefault('show_progress', False)
    return RunConfig(input_dir=card, output_dir=out, **kwargs)


def tree(root):
    """Relative paths of every file under root, excluding log and state files."""
    skip = {config.STATE_FILENAME, config.LOG_FILENAME}
    return sorted(
        str(p.relative_to(root)) for p in root.rglob("*")
        if p.is_file() and p.name not in skip
    )


def test_full_run(card, tmp_path):
    out = tmp_path / "photos"
    result = SessionIngestApp(run_config(card, out)).run()

    assert result.exit_code == config.EXIT_OK
    assert result.files_found == 5
    assert [s.folder_name for s in result.sessions] == ["2024-01-15_a", "2024-01-15_b"]
    assert tree(out) == [
        "2024-01-15_a/IMG_1001.CR2",
        "2024-01-15_a/IMG_1002.CR2",
        "2024-01-15_a/IMG_1003.CR2",
        "2024-01-15_b/IMG_1004.CR2",
        "2024-01-15_b/IMG_1005.CR2",
    ]
    for copied in out.rglob("*.CR2"):
        src = card / "DCIM" / "100CANON" / copied.name
        assert copied.read_bytes() == src.read_bytes()

    # Complete run: resume state removed from both locations
    assert result.state_cleared
    assert not (out / config.STATE_FILENAME).exists()
    assert not (card / config.STATE_FILENAME).exists()


def test_second_run_copies_nothing(card, tmp_path):
    out = tmp_path / "photos"
    SessionIngestApp(run_config(card, out)).run()
    before = {p: p.stat().st_mtime_ns for p in out.rglob("*.CR2")}

    result = SessionIngestApp(run_config(card, out)).run()

    assert result.exit_code == config.EXIT_OK
    assert result.copy.copied == []
    assert result.copy.bytes_copied == 0
    assert len(result.copy.skipped) == 5
    assert {p: p.stat().st_mtime_ns for p in out.rglob("*.CR2")} == before


def test_interrupted_run_resumes(card, tmp_path):
    out = tmp_path / "photos"

    class PowerCut(Exception):
        pass

    def cut_after_two(event):
        if event.position == 2:
            raise PowerCut()

    with pytest.raises(PowerCut):
        SessionIngestApp(run_config(card, out), observers=[cut_after_two]).run()

    # Both state copies survive the interruption
    for state_file in (out / config.STATE_FILENAME, card / config.STATE_FILENAME):
        doc = json.loads(state_file.read_text(encoding='utf-8'))
        assert sorted(doc['files'].values()) == ["copied", "copied", "pending", "pending", "pending"]
        assert doc['total_files'] == 5

    first_two = {p: p.stat().st_mtime_ns for p in out.rglob("*.CR2")}
    result = SessionIngestApp(run_config(card, out)).run()

    assert [p.name for p in result.copy.skipped] == ["IMG_1001.CR2", "IMG_1002.CR2"]
    assert [p.name for p in result.copy.copied] == ["IMG_1003.CR2", "IMG_1004.CR2", "IMG_1005.CR2"]
    assert {p: p.stat().st_mtime_ns for p in first_two} == first_two
    assert result.state_cleared


def test_second_card_never_overwrites_the_first(card, tmp_path, make_cr2):
    out = tmp_path / "photos"
    first = SessionIngestApp(run_config(card, out)).run()
    assert first.exit_code == config.EXIT_OK
    kept = (out / "2024-01-15_a" / "IMG_1001.CR2").read_bytes()

    # Another body with the same file counter, shooting the same day
    other = tmp_path / "card_b"
    dcim = other / "DCIM" / "100CANON"
    make_cr2(dcim / "IMG_1001.CR2", "2024:01:15 10:00:30")
    make_cr2(dcim / "IMG_1002.CR2", "2024:01:15 19:00:30")

    second = SessionIngestApp(run_config(other, out)).run()

    assert second.exit_code == config.EXIT_OK
    assert second.copy.failed == []
    assert (out / "2024-01-15_a" / "IMG_1001.CR2").read_bytes() == kept
    assert (out / "2024-01-15_a" / "IMG_1001_1.CR2").read_bytes() == (dcim / "IMG_1001.CR2").read_bytes()
    assert sorted(p.name for p in (out / "2024-01-15_a").iterdir()) == [
        "IMG_1001.CR2", "IMG_1001_1.CR2", "IMG_1002.CR2", "IMG_1003.CR2",
    ]

    # Re-reading the second card finds its own copies
    again = SessionIngestApp(run_config(other, out)).run()
    assert again.copy.copied == []
    assert len(again.copy.skipped) == 2


def test_relative_paths_are_made_absolute(card, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    cfg = run_config(Path("card"), Path("photos"))

    assert cfg.input_dir == card.resolve()
    assert cfg.output_dir == (tmp_path / "photos").resolve()
    assert cfg.fingerprint()["input_dir"] == str(card.resolve())

    class PowerCut(Exception):
        pass

    def cut(event):
        raise PowerCut()

    with pytest.raises(PowerCut):
        SessionIngestApp(cfg, observers=[cut]).run()

    doc = json.loads((tmp_path / "photos" / config.STATE_FILENAME).read_text(encoding='utf-8'))
    assert all(Path(src).is_absolute() for src in doc["files"])
    assert all(Path(dest).is_absolute() for dest in doc["destinations"].values())


def test_changed_gap_starts_fresh_state(card, tmp_path):
    out = tmp_path / "photos"

    class PowerCut(Exception):
        pass

    def cut_after_one(event):
        raise PowerCut()

    with pytest.raises(PowerCut):
        SessionIngestApp(run_config(card, out), observers=[cut_after_one]).run()

    result = SessionIngestApp(run_config(card, out, gap_hours=12.0)).run()

    # One session now; nothing from the old layout counts as copied
    assert [s.folder_name for s in result.sessions] == ["2024-01-15"]
    assert len(result.copy.copied) == 5


def test_dry_run_writes_nothing(card, tmp_path):
    out = tmp_path / "photos"
    card_before = tree(card)

    result = SessionIngestApp(run_config(card, out, dry_run=True)).run()

    assert result.exit_code == config.EXIT_OK
    assert len(result.copy.previewed) == 5
    assert result.copy.copied == []
    assert not out.exists()
    assert tree(card) == card_before
    assert not (card / config.STATE_FILENAME).exists()


def test_mixed_media_and_bad_container(card, tmp_path, make_mp4, touch_mtime):
    dcim = card / "DCIM" / "100CANON"
    make_mp4(dcim / "MVI_1006.MP4", datetime(2024, 1, 15, 19, 45, tzinfo=UTC))
    broken = dcim / "MVI_1007.MP4"
    broken.write_bytes(b"\x00\x00\x01\x00moov" + b"\x00" * 16)
    touch_mtime(broken, datetime(2024, 3, 1, 9, 0, tzinfo=UTC))

    out = tmp_path / "photos"
    result = SessionIngestApp(run_config(card, out)).run()

    assert result.exit_code == config.EXIT_OK
    assert [s.folder_name for s in result.sessions] == ["2024-01-15_a", "2024-01-15_b", "2024-03-01"]
    assert (out / "2024-01-15_b" / "MVI_1006.MP4").exists()
    assert (out / "2024-03-01" / "MVI_1007.MP4").exists()


def test_unsequenced_file_is_partial_failure(card, tmp_path, make_cr2):
    make_cr2(card / "DCIM" / "portrait.CR2", "2024:01:15 10:01:00")
    out = tmp_path / "photos"

    result = SessionIngestApp(run_config(card, out)).run()

    assert result.exit_code == config.EXIT_PARTIAL
    assert [i.kind for i in result.issues] == [IssueKind.NO_SEQUENCE]
    assert len(result.copy.copied) == 5
    assert not (out / "2024-01-15_a" / "portrait.CR2").exists()


def test_duplicate_sequences_are_kept(card, tmp_path, make_cr2):
    make_cr2(card / "DCIM" / "101CANON" / "IMG_1002.CR2", "2024:01:15 10:06:00")
    out = tmp_path / "photos"

    result = SessionIngestApp(run_config(card, out)).run()

    assert result.exit_code == config.EXIT_OK
    assert len(result.warnings) == 2
    assert sorted(p.name for p in (out / "2024-01-15_a").iterdir()) == [
        "IMG_1001.CR2", "IMG_1002.CR2", "IMG_1002_1.CR2", "IMG_1003.CR2",
    ]


def test_output_inside_input_is_not_rescanned(card, tmp_path):
    out = card / "sorted"
    SessionIngestApp(run_config(card, out)).run()

    result = SessionIngestApp(run_config(card, out)).run()

    assert result.files_found == 5
    assert result.copy.copied == []


def test_missing_input_is_fatal(tmp_path):
    with pytest.raises(InputDirectoryError):
        SessionIngestApp(run_config(tmp_path / "no-card", tmp_path / "photos")).run()
    assert not (tmp_path / "photos").exists()


def test_output_equal_to_input_is_fatal(card):
    with pytest.raises(OutputDirectoryError):
        SessionIngestApp(run_config(card, card)).run()


def test_unwritable_output_is_fatal(card, tmp_path):
    blocker = tmp_path / "photos"
    blocker.write_text("a file where the output directory should be")
    with pytest.raises(OutputDirectoryError):
        SessionIngestApp(run_config(card, blocker)).run()


def test_empty_card(tmp_path):
    card = tmp_path / "card"
    card.mkdir()
    result = SessionIngestApp(run_config(card, tmp_path / "photos")).run()

    assert result.exit_code == config.EXIT_OK
    assert result.sessions == []


# --- CLI ---

def test_cli_copies_and_logs(card, tmp_path):
    out = tmp_path / "photos"
    report = tmp_path / "plan.csv"

    code = main(["-i", str(card), "-o", str(out), "--timezone", "UTC",
                 "--no-progress", "--report-csv", str(report)])

    assert code == config.EXIT_OK
    assert (out / "2024-01-15_b" / "IMG_1005.CR2").exists()
    assert (out / config.LOG_FILENAME).exists()
    with open(report, "r", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert [row["Session Folder"] for row in rows] == ["2024-01-15_a"] * 3 + ["2024-01-15_b"] * 2


def test_cli_dry_run(card, tmp_path):
    out = tmp_path / "photos"
    code = main(["-i", str(card), "-o", str(out), "--timezone", "UTC", "--no-progress", "--dry-run"])

    assert code == config.EXIT_OK
    assert not out.exists()


def test_cli_missing_input(tmp_path):
    code = main(["-i", str(tmp_path / "no-card"), "-o", str(tmp_path / "photos"), "--no-progress"])
    assert code == config.EXIT_FATAL


def test_cli_partial_failure(card, tmp_path):
    (card / "DCIM" / "clip.MP4").write_bytes(b"no sequence digits in this name")
    code = main(["-i", str(card), "-o", str(tmp_path / "photos"), "--timezone", "UTC", "--no-progress"])
    assert code == config.EXIT_PARTIAL


def test_state_mirror_can_be_disabled(card, tmp_path):
    out = tmp_path / "photos"

    def refuse_mirror(event):
        assert not (card / config.STATE_FILENAME).exists()
        assert (out / config.STATE_FILENAME).exists()

    app = SessionIngestApp(run_config(card, out, mirror_state=False), observers=[refuse_mirror])
    assert app.run().exit_code == config.EXIT_OK


@pytest.mark.parametrize("argv", [
    ["--gap-hours", "-2"],
    ["--gap-hours", "soon"],
    ["--timezone", "Mars/Olympus_Mons"],
])
def test_cli_rejects_bad_arguments(argv, tmp_path):
    with pytest.raises(SystemExit) as exc:
        main(["-i", str(tmp_path), "-o", str(tmp_path / "out")] + argv)
    assert exc.value.code == 2
