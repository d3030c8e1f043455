from saldin.services.result import DB_ERROR, NOT_FOUND, Result


class TestResultSuccess:
    def test_success_creates_ok_result(self):
        result = Result.success("test value")
        assert result.ok is True
        assert result.value == "test value"
        assert result.error is None

    def test_success_is_never_not_found(self):
        assert Result.success(None).is_not_found is False


class TestResultFailure:
    def test_failure_creates_not_ok_result(self):
        result = Result.failure("Something went wrong", DB_ERROR)
        assert result.ok is False
        assert result.error == "Something went wrong"
        assert result.error_code == DB_ERROR
        assert result.value is None

    def test_failure_default_code(self):
        result = Result.failure("Error message")
        assert result.error_code == "unknown"

    def test_not_found_flag(self):
        assert Result.failure("missing", NOT_FOUND).is_not_found is True
        assert Result.failure("boom", DB_ERROR).is_not_found is False


class TestResultUnwrapOr:
    def test_unwrap_or_returns_value_on_success(self):
        assert Result.success("actual value").unwrap_or("default") == "actual value"

    def test_unwrap_or_returns_default_on_failure(self):
        assert Result.failure("Error", "code").unwrap_or("default") == "default"
