"""Unit tests for statement upload and file management

Detection is fed by ``fake_pdf_text``: each payload's bytes stand in for
the text pdfplumber would extract.
"""

from __future__ import annotations

import pytest
from conftest import principal_for

from balance.api.routes.files import parse_upload_meta
from balance.errors import BadRequestError, ForbiddenError, NotFoundError, StorageError
from balance.files.repository import FileRepository
from balance.files.service import (
    MISSING_PAYLOAD_MESSAGE,
    NOT_A_PDF_MESSAGE,
    NOT_A_STATEMENT_WARNING,
    FileService,
    IncomingFile,
    duplicate_name_message,
    max_count_message,
    max_size_message,
)
from balance.files.types import FileCategory, StatementType
from balance.sessions.repository import SessionRepository
from balance.sessions.service import SessionService
from balance.utils.timestamps import utc_now

CREDIT_TEXT = b"credit card statement. minimum payment due. payment due date. credit limit."
CHECKING_TEXT = b"checking account summary. direct deposit. debit card purchases."


def pdf(name: str, data: bytes = CREDIT_TEXT, mime_type: str = "application/pdf") -> IncomingFile:
    return IncomingFile(original_name=name, mime_type=mime_type, size=len(data), data=data)


@pytest.fixture
def files(db, settings, storage, fake_pdf_text) -> FileService:
    return FileService(settings, storage)


@pytest.fixture
def session_id(db, settings, storage, access_tokens) -> str:
    return SessionService(settings, storage, access_tokens).create_session("a@b.com")["sessionId"]


@pytest.fixture
def owner(session_id):
    return principal_for("a@b.com", session_id)


def test_upload_detects_type_and_stores_object(files, storage, session_id, owner):
    result = files.upload(session_id, owner, [pdf("Jan.pdf")])

    assert result["rejected"] == []
    assert result["warnings"] == []
    [uploaded] = result["uploaded"]
    assert uploaded["statementType"] == "credit"
    assert uploaded["category"] == "credit"
    assert uploaded["autoDetectedType"] == "credit"
    assert uploaded["detectionConfidence"] == 0.5
    assert uploaded["status"] == "uploaded"
    assert uploaded["storageKey"].startswith(f"sessions/{session_id}/credit/{uploaded['id']}-jan")
    assert storage.objects[uploaded["storageKey"]] == (CREDIT_TEXT, "application/pdf")


def test_client_hint_beats_detection(files, session_id, owner):
    result = files.upload(
        session_id, owner, [pdf("a.pdf"), pdf("b.pdf")], {"a.pdf": StatementType.SAVINGS,
                                                         "b.pdf": StatementType.UNKNOWN}
    )

    a, b = result["uploaded"]
    assert (a["statementType"], a["autoDetectedType"]) == ("savings", "credit")
    assert b["statementType"] == "credit"


def test_hint_matches_file_name_with_surrounding_spaces(files, session_id, owner):
    hints = parse_upload_meta('[{"clientFileName": "Jan.pdf ", "statementType": "savings"}]')
    result = files.upload(session_id, owner, [pdf(" Jan.pdf")], hints)

    [uploaded] = result["uploaded"]
    assert (uploaded["statementType"], uploaded["autoDetectedType"]) == ("savings", "credit")


def test_auto_categorize_off_files_everything_as_unfiled(files, session_id, owner):
    SessionRepository.update_auto_categorize(session_id, False, utc_now())

    [uploaded] = files.upload(session_id, owner, [pdf("Jan.pdf")])["uploaded"]

    assert uploaded["statementType"] == "credit"
    assert uploaded["category"] == "unfiled"
    assert "/unfiled/" in uploaded["storageKey"]


def test_duplicate_names_rejected_case_insensitively(files, session_id, owner):
    files.upload(session_id, owner, [pdf("Statement.pdf")])

    result = files.upload(session_id, owner, [pdf("STATEMENT.PDF"), pdf("other.pdf")])

    assert result["rejected"] == [
        {"originalName": "STATEMENT.PDF", "reason": duplicate_name_message("STATEMENT.PDF")}
    ]
    assert [f["originalName"] for f in result["uploaded"]] == ["other.pdf"]


def test_duplicate_within_one_batch(files, session_id, owner):
    result = files.upload(session_id, owner, [pdf("x.pdf"), pdf("X.pdf")])

    assert len(result["uploaded"]) == 1
    assert result["rejected"][0]["originalName"] == "X.pdf"


def test_non_pdf_and_empty_payload_never_reach_storage(files, storage, session_id, owner):
    result = files.upload(
        session_id,
        owner,
        [
            pdf("notes.txt", b"credit card", mime_type="text/plain"),
            IncomingFile(original_name="empty.pdf", mime_type="application/pdf", size=0, data=None),
        ],
    )

    assert result["uploaded"] == []
    assert [r["reason"] for r in result["rejected"]] == [NOT_A_PDF_MESSAGE, MISSING_PAYLOAD_MESSAGE]
    assert storage.objects == {}
    assert FileRepository.list_for_session(session_id) == []


def test_oversized_file_rejected(files, settings, session_id, owner):
    big = IncomingFile(
        original_name="big.pdf",
        mime_type="application/pdf",
        size=settings.max_file_size_bytes + 1,
        data=b"credit card",
    )

    result = files.upload(session_id, owner, [big])

    assert result["rejected"][0]["reason"] == max_size_message(settings.max_file_size_mb)


def test_files_past_max_count_are_rejected(files, settings, session_id, owner):
    batch = [pdf(f"s{i}.pdf") for i in range(settings.max_files_per_upload + 2)]

    result = files.upload(session_id, owner, batch)

    assert len(result["uploaded"]) == settings.max_files_per_upload
    assert [r["reason"] for r in result["rejected"]] == [
        max_count_message(settings.max_files_per_upload)
    ] * 2


def test_storage_failure_keeps_rejected_name_until_deleted(files, storage, session_id, owner):
    storage.fail_put = True
    result = files.upload(session_id, owner, [pdf("Jan.pdf")])

    assert result["uploaded"] == []
    assert result["rejected"] == [
        {"originalName": "Jan.pdf", "reason": "Storage service is unreachable."}
    ]
    assert FileRepository.taken_names(session_id) == {"jan.pdf"}

    storage.fail_put = False
    retry = files.upload(session_id, owner, [pdf("Jan.pdf")])
    assert retry["uploaded"] == []
    assert retry["rejected"] == [
        {"originalName": "Jan.pdf", "reason": duplicate_name_message("Jan.pdf")}
    ]
    [listed] = files.list_session_files(session_id, owner)
    assert (listed["originalName"], listed["status"]) == ("Jan.pdf", "rejected")

    # Deleting the rejected record skips storage and frees the name
    files.delete(listed["id"], owner)
    assert storage.deleted == []
    assert len(files.upload(session_id, owner, [pdf("Jan.pdf")])["uploaded"]) == 1
    assert [f["status"] for f in files.list_session_files(session_id, owner)] == ["uploaded"]


def test_unrecognized_text_uploads_with_warning(files, session_id, owner):
    result = files.upload(session_id, owner, [pdf("photo.pdf", b"holiday pictures")])

    [uploaded] = result["uploaded"]
    assert uploaded["statementType"] == "unknown"
    assert uploaded["category"] == "unknown"
    assert result["warnings"] == [{"originalName": "photo.pdf", "reason": NOT_A_STATEMENT_WARNING}]


def test_empty_batch_is_bad_request(files, session_id, owner):
    with pytest.raises(BadRequestError):
        files.upload(session_id, owner, [])


def test_upload_to_other_session_is_forbidden(files, session_id):
    with pytest.raises(ForbiddenError):
        files.upload(session_id, principal_for("a@b.com", "ZZZZZZZZ"), [pdf("a.pdf")])


def test_detect_preview_stores_nothing(files, storage, session_id, owner):
    result = files.detect_preview(
        session_id,
        owner,
        [pdf("a.pdf", CHECKING_TEXT), pdf("b.txt", mime_type="text/plain"), pdf("c.pdf", b"?")],
    )

    a, b, c = result["files"]
    assert a["autoDetectedType"] == "checking"
    assert "warning" not in a
    assert b == {
        "originalName": "b.txt",
        "autoDetectedType": "unknown",
        "detectionConfidence": 0.0,
        "isLikelyStatement": False,
        "warning": NOT_A_PDF_MESSAGE,
    }
    assert c["warning"] == NOT_A_STATEMENT_WARNING
    assert storage.objects == {}
    assert FileRepository.list_for_session(session_id) == []


def test_confirming_type_moves_category_unless_unfiled(files, session_id, owner):
    [filed] = files.upload(session_id, owner, [pdf("a.pdf")])["uploaded"]
    SessionRepository.update_auto_categorize(session_id, False, utc_now())
    [unfiled] = files.upload(session_id, owner, [pdf("b.pdf")])["uploaded"]

    filed = files.update_statement_type(filed["id"], StatementType.CHECKING, owner)
    unfiled = files.update_statement_type(unfiled["id"], StatementType.CHECKING, owner)

    assert (filed["statementType"], filed["category"]) == ("checking", "checking")
    assert (unfiled["statementType"], unfiled["category"]) == ("checking", "unfiled")
    assert filed["confirmedByUser"] is True


def test_move_to_category(files, session_id, owner):
    uploaded = files.upload(session_id, owner, [pdf("a.pdf"), pdf("b.pdf")])["uploaded"]
    ids = [f["id"] for f in uploaded]

    moved = files.move_to_category(session_id, ids + ["bogus"], FileCategory.SAVINGS, owner)
    assert moved == {"movedCount": 2, "category": "savings"}

    files.move_to_category(session_id, ids[:1], FileCategory.UNFILED, owner)
    listed = {f["id"]: f for f in files.list_session_files(session_id, owner)}
    assert (listed[ids[0]]["category"], listed[ids[0]]["statementType"]) == ("unfiled", "savings")
    assert (listed[ids[1]]["category"], listed[ids[1]]["statementType"]) == ("savings", "savings")


def test_move_requires_ids(files, session_id, owner):
    with pytest.raises(BadRequestError):
        files.move_to_category(session_id, [], FileCategory.SAVINGS, owner)


def test_delete_removes_object_and_record(files, storage, session_id, owner):
    [uploaded] = files.upload(session_id, owner, [pdf("a.pdf")])["uploaded"]

    assert files.delete(uploaded["id"], owner) == {"deleted": True, "fileId": uploaded["id"]}
    assert storage.deleted == [uploaded["storageKey"]]
    assert files.list_session_files(session_id, owner) == []
    with pytest.raises(NotFoundError):
        files.delete(uploaded["id"], owner)


def test_delete_propagates_storage_errors(files, storage, session_id, owner):
    [uploaded] = files.upload(session_id, owner, [pdf("a.pdf")])["uploaded"]
    storage.fail_delete_keys.add(uploaded["storageKey"])

    with pytest.raises(StorageError):
        files.delete(uploaded["id"], owner)
    assert len(files.list_session_files(session_id, owner)) == 1


def test_get_raw_returns_bytes(files, session_id, owner):
    [uploaded] = files.upload(session_id, owner, [pdf("Jan.pdf")])["uploaded"]

    raw = files.get_raw(uploaded["id"], owner)

    assert raw.body == CREDIT_TEXT
    assert raw.content_type == "application/pdf"
    assert raw.original_name == "Jan.pdf"


def test_other_owner_cannot_see_file(files, session_id, owner):
    [uploaded] = files.upload(session_id, owner, [pdf("Jan.pdf")])["uploaded"]

    with pytest.raises(NotFoundError):
        files.get_raw(uploaded["id"], principal_for("eve@b.com"))
    with pytest.raises(NotFoundError):
        files.get_raw("not-a-uuid", owner)
