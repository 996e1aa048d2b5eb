"""Tests for the agency error taxonomy."""

import pytest

from spycats.errors import REASON_KINDS, AgencyError, ErrorKind, store_errors


class TestAgencyError:
    @pytest.mark.parametrize("reason,kind", sorted(REASON_KINDS.items()))
    def test_from_reason_uses_table(self, reason, kind):
        error = AgencyError.from_reason(reason)

        assert error.kind is kind
        assert error.reason == reason
        assert error.message

    def test_unknown_reason_is_internal(self):
        error = AgencyError.from_reason("disk_on_fire")

        assert error.kind is ErrorKind.INTERNAL
        assert error.reason == "disk_on_fire"

    def test_missing_reason(self):
        error = AgencyError.from_result({"success": False})

        assert error.kind is ErrorKind.INTERNAL
        assert error.reason == "unknown_failure"

    def test_message_override(self):
        error = AgencyError.from_result(
            {"success": False, "reason": "cat_not_available", "message": "Tom is busy"}
        )

        assert error.kind is ErrorKind.CONFLICT
        assert str(error) == "Tom is busy"

    def test_not_found_helper(self):
        error = AgencyError.not_found("target")

        assert error.kind is ErrorKind.NOT_FOUND
        assert error.reason == "target_not_found"

    def test_to_dict(self):
        error = AgencyError.invalid("invalid_salary", "salary must be greater than 0")

        assert error.to_dict() == {
            "kind": "invalid_input",
            "error": "invalid_salary",
            "detail": "salary must be greater than 0",
        }


    def test_internal_detail_is_generic(self):
        error = AgencyError(
            ErrorKind.INTERNAL, "store_error", "get_cat failed: 500 for url https://db.internal"
        )

        assert error.detail == "internal error"
        assert error.to_dict()["detail"] == "internal error"
        assert "db.internal" in error.message

    def test_business_detail_is_the_message(self):
        assert AgencyError.from_reason("cat_not_available").detail == (
            "cat is not available for a mission"
        )


class TestStoreErrors:
    def test_wraps_foreign_exceptions(self):
        with pytest.raises(AgencyError) as exc_info:
            with store_errors("get_cat"):
                raise ConnectionError("refused")

        assert exc_info.value.kind is ErrorKind.INTERNAL
        assert exc_info.value.reason == "store_error"
        assert "get_cat" in exc_info.value.message
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    def test_passes_agency_errors_through(self):
        original = AgencyError.not_found("cat")

        with pytest.raises(AgencyError) as exc_info:
            with store_errors("get_cat"):
                raise original

        assert exc_info.value is original

    def test_does_not_log(self, caplog):
        with pytest.raises(AgencyError):
            with store_errors("list_cats"):
                raise ConnectionError("refused")

        assert caplog.records == []
