import pytest

from appharbor.context import RequestContext, bind_request_context, get_request_context
from appharbor.exceptions import AppHarborError, ConflictError, NotFoundError


def test_bind_request_context_restores_outer_values():
    with bind_request_context("tenant-1", "user-1"):
        with bind_request_context("tenant-2") as inner:
            assert inner.tenant_id == "tenant-2"
            assert get_request_context().user_id is None
        assert get_request_context().tenant_id == "tenant-1"

    assert get_request_context().tenant_id is None


def test_bind_request_context_resets_on_error():
    with pytest.raises(RuntimeError):
        with bind_request_context("tenant-1", "user-1"):
            raise RuntimeError("boom")

    assert get_request_context() == RequestContext(tenant_id=None, user_id=None)


def test_error_code_and_status_come_from_the_class():
    missing = NotFoundError("Installed app", "jul25", tenant_id="tenant-1")

    assert (missing.code, missing.status_code) == ("NOT_FOUND", 404)
    assert missing.to_dict() == {
        "code": "NOT_FOUND",
        "message": "Installed app 'jul25' not found",
        "user_message": "Installed app 'jul25' not found",
        "details": {"resource": "Installed app", "id": "jul25", "tenant_id": "tenant-1"},
    }
    assert isinstance(ConflictError("taken"), AppHarborError)
    assert ConflictError("taken").status_code == 409
