from atende.services.result import Result


class TestResult:
    def test_success(self):
        result = Result.success({"id": 1})
        assert result.ok
        assert result.value == {"id": 1}
        assert result.error is None

    def test_failure(self):
        result = Result.failure("Overlaps active rule 3", "conflict")
        assert not result.ok
        assert result.error_code == "conflict"

    def test_not_found(self):
        result = Result.not_found("Case 42")
        assert result.error == "Case 42 not found"
        assert result.error_code == "not_found"

    def test_unwrap_or(self):
        assert Result.success(5).unwrap_or(0) == 5
        assert Result.failure("x").unwrap_or(0) == 0
