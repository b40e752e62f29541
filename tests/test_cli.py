"""Tests for the command-line interface."""

import json
import tempfile
from pathlib import Path

import pytest
from witnessbox.cli import main
from witnessbox.models import Student
from witnessbox.storage import SQLiteStorage


class TestCli:
    """Admin CLI commands."""

    def test_classify_json(self, capsys):
        main(["classify", "What is the derivative of x^2?", "--mode", "strict", "--json"])

        payload = json.loads(capsys.readouterr().out)
        assert payload["category"] == "math"
        assert payload["confidence"] == 0.85
        assert payload["block"] is True

    def test_classify_text(self, capsys):
        main(["classify", "Why did Westley fake his own death to fool Vizzini?"])

        out = capsys.readouterr().out
        assert "Violation: False" in out
        assert "Blocked: False" in out

    def test_no_command(self):
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 1

    def test_add_students_and_check_usage(self, capsys):
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = f"{tmpdir}/witnessbox.db"
            roster = Path(tmpdir) / "roster.txt"
            roster.write_text("Ana Lopez (ana@school.edu)\nBen Ode (ben@school.edu)\n", encoding="utf-8")

            main(["--db", db_path, "add-students", str(roster)])
            assert "Added: 2" in capsys.readouterr().out

            main(["--db", db_path, "add-students", str(roster)])
            assert "Already whitelisted: 2" in capsys.readouterr().out

            main(["--db", db_path, "check-usage", "ana@school.edu"])
            assert "Can proceed: True" in capsys.readouterr().out

    def test_check_usage_denied_exit_code(self, capsys):
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = f"{tmpdir}/witnessbox.db"
            storage = SQLiteStorage(db_path=db_path)
            storage.create_student(Student(email="ana@school.edu", daily_token_limit=0))
            storage.close()

            with pytest.raises(SystemExit) as exc_info:
                main(["--db", db_path, "check-usage", "ana@school.edu"])

            assert exc_info.value.code == 2
            assert "Daily token limit reached" in capsys.readouterr().out

    def test_init_db_and_violations(self, capsys):
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = f"{tmpdir}/witnessbox.db"

            main(["--db", db_path, "init-db"])
            assert Path(db_path).exists()

            main(["--db", db_path, "violations"])
            assert "0 event(s)" in capsys.readouterr().out
