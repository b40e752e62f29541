"""Tests for class list parsing."""

from witnessbox.roster import ParsedStudent, normalize_text, parse_student_list, validate_students


class TestParseStudentList:
    """Pasted roster text."""

    def test_name_email_entries(self):
        text = "Ana Lopez (ana@school.edu), Ben Ode (BEN@School.edu); Carla Diaz (carla@school.edu)"

        result = parse_student_list(text)

        assert [s.email for s in result.students] == [
            "ana@school.edu", "ben@school.edu", "carla@school.edu",
        ]
        assert [s.name for s in result.students] == ["Ana Lopez", "Ben Ode", "Carla Diaz"]
        assert result.errors == []

    def test_newline_and_tab_separators(self):
        result = parse_student_list("Ana Lopez (ana@school.edu)\nBen Ode (ben@school.edu)\tCarla Diaz (carla@school.edu)")
        assert len(result.students) == 3

    def test_duplicates_reported(self):
        result = parse_student_list("Ana (ana@school.edu), Ana Again (ANA@school.edu)")

        assert len(result.students) == 1
        assert result.duplicates == ["ana@school.edu"]

    def test_invalid_email_reported(self):
        result = parse_student_list("Ana (ana@school.edu), Bad Entry (not-an-email)")

        assert len(result.students) == 1
        assert result.errors == [{"line": "Bad Entry (not-an-email)", "error": "Invalid email format"}]

    def test_bare_email_fallback(self):
        """Without Name (email) entries, names come from the local part."""
        result = parse_student_list("ana@school.edu\nben.ode@school.edu, ana@school.edu")

        assert [s.email for s in result.students] == ["ana@school.edu", "ben.ode@school.edu"]
        assert [s.name for s in result.students] == ["Ana", "Ben.ode"]
        assert result.duplicates == ["ana@school.edu"]

    def test_empty_text(self):
        result = parse_student_list("   ")

        assert result.students == []
        assert result.errors == []

    def test_normalize_text(self):
        assert normalize_text("“Ana”   Lopez\t ") == '"Ana" Lopez'


class TestValidateStudents:
    """Splitting parsed students before insert."""

    def test_split(self):
        parsed = [
            ParsedStudent(name="Ana Lopez", email="ana@school.edu"),
            ParsedStudent(name="Ben Ode", email="ben@school.edu"),
            ParsedStudent(name="C", email="c@school.edu"),
            ParsedStudent(name="D" * 101, email="d@school.edu"),
        ]

        result = validate_students(parsed, {"BEN@school.edu"})

        assert [s.email for s in result.valid] == ["ana@school.edu"]
        assert result.existing == ["ben@school.edu"]
        assert [s.email for s, _ in result.invalid] == ["c@school.edu", "d@school.edu"]
        assert "too short" in result.invalid[0][1]
        assert "too long" in result.invalid[1][1]
