import pytest
from core.store import JournalStore
from main import main, parse_arguments
from tests.fixtures import TestDataFixtures


class TestCommandLine:
    """Test suite for the command line entry point"""

    @pytest.fixture
    def db_path(self, tmp_path):
        return tmp_path / "data" / "journal.duckdb"

    def test_defaults(self):
        args = parse_arguments([])

        assert args.command == 'stats'
        assert not args.use_google
        assert args.chunk_size == 1000

    def test_import(self, tmp_path, db_path, capsys):
        export = TestDataFixtures.write_export(tmp_path / "Records.json", TestDataFixtures.get_locations_export())

        with pytest.raises(SystemExit) as exc_info:
            main(['import', '--file', str(export), '--db', str(db_path), '--user', 'alice'])

        assert exc_info.value.code == 0
        assert "Locations created: 2" in capsys.readouterr().out

        store = JournalStore.open(db_path)
        assert store.count('locations') == 2
        store.close()

    def test_import_unrecognized_export(self, tmp_path, db_path):
        export = TestDataFixtures.write_export(tmp_path / "other.json", {"rawSignals": []})

        with pytest.raises(SystemExit) as exc_info:
            main(['import', '--file', str(export), '--db', str(db_path)])

        assert exc_info.value.code == 1

    def test_stats(self, db_path, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(['stats', '--db', str(db_path)])

        assert exc_info.value.code == 0
        output = capsys.readouterr().out
        assert "=== Journal Statistics ===" in output
        assert "weather_cache: 0" in output

    def test_job_status_idle(self, tmp_path, db_path, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(['job-status', '--db', str(db_path), '--job-store', str(tmp_path / "jobs.json")])

        assert exc_info.value.code == 0
        assert "Status: idle" in capsys.readouterr().out

    def test_unknown_command(self, db_path, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(['frobnicate', '--db', str(db_path)])

        assert exc_info.value.code == 1
        assert "Commands:" in capsys.readouterr().out
