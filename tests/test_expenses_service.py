"""Tests for the expense service layer."""
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import NoCredentialsError
from sqlalchemy import func, select

from models.expense import ExpenseCreate, ExpensePatch, ExpenseReplace
from models.tables import ExpenseRow
from services import expenses_service
from services.expenses_service import DuplicateExpenseError, EmptyPatchError, ExpenseNotFoundError
from services.storage_service import ObjectStorageGateway, UpstreamSigningError


async def _row_count(session) -> int:
    return (await session.execute(select(func.count()).select_from(ExpenseRow))).scalar_one()


@pytest.fixture
def broken_storage() -> ObjectStorageGateway:
    client = MagicMock()
    client.generate_presigned_url.side_effect = NoCredentialsError()
    return ObjectStorageGateway(client, "test-bucket")


class TestCreateAndRead:

    @pytest.mark.asyncio
    async def test_create_then_get(self, db_session, storage) -> None:
        created = await expenses_service.create_expense(db_session, ExpenseCreate(title="Lunch", amount=1200))
        fetched = await expenses_service.get_expense(db_session, storage, created.id)
        assert fetched.title == "Lunch"
        assert fetched.amount == 1200
        assert fetched.file_url is None

    @pytest.mark.asyncio
    async def test_client_supplied_id_is_kept(self, db_session) -> None:
        created = await expenses_service.create_expense(db_session, ExpenseCreate(id=42, title="Taxi", amount=3000))
        assert created.id == 42

    @pytest.mark.asyncio
    async def test_duplicate_id_is_rejected(self, db_session) -> None:
        await expenses_service.create_expense(db_session, ExpenseCreate(id=42, title="Taxi", amount=3000))
        with pytest.raises(DuplicateExpenseError):
            await expenses_service.create_expense(db_session, ExpenseCreate(id=42, title="Hotel", amount=9000))
        assert await _row_count(db_session) == 1

    @pytest.mark.asyncio
    async def test_list_is_ordered_by_id(self, db_session, storage) -> None:
        for title in ("Coffee", "Lunch", "Dinner"):
            await expenses_service.create_expense(db_session, ExpenseCreate(title=title, amount=100))
        expenses = await expenses_service.list_expenses(db_session, storage)
        assert [e.title for e in expenses] == ["Coffee", "Lunch", "Dinner"]

    @pytest.mark.asyncio
    async def test_get_missing_raises(self, db_session, storage) -> None:
        with pytest.raises(ExpenseNotFoundError):
            await expenses_service.get_expense(db_session, storage, 999)


class TestFileReferences:

    @pytest.mark.asyncio
    async def test_bare_key_is_signed_on_read_but_stored_raw(self, db, storage) -> None:
        _, session_factory = db
        async with session_factory() as session:
            created = await expenses_service.create_expense(session, ExpenseCreate(title="Lunch", amount=1200))
            patched = await expenses_service.partial_update_expense(
                session, storage, created.id, ExpensePatch.model_validate({"fileKey": "receipts/abc.png"})
            )
        assert patched.file_url.startswith("https://")
        assert "X-Amz-Signature" in patched.file_url

        async with session_factory() as session:
            row = await session.get(ExpenseRow, created.id)
        assert row.file_url == "receipts/abc.png"

    @pytest.mark.asyncio
    async def test_absolute_url_is_not_signed(self, db_session, storage) -> None:
        created = await expenses_service.create_expense(db_session, ExpenseCreate(title="Lunch", amount=1200))
        patched = await expenses_service.partial_update_expense(
            db_session, storage, created.id, ExpensePatch.model_validate({"fileUrl": "https://cdn.example.com/a.png"})
        )
        assert patched.file_url == "https://cdn.example.com/a.png"

    @pytest.mark.asyncio
    async def test_signing_failure_returns_unsigned_key(self, db_session, storage, broken_storage) -> None:
        created = await expenses_service.create_expense(db_session, ExpenseCreate(title="Lunch", amount=1200))
        await expenses_service.partial_update_expense(
            db_session, storage, created.id, ExpensePatch.model_validate({"fileKey": "receipts/abc.png"})
        )
        expenses = await expenses_service.list_expenses(db_session, broken_storage)
        assert expenses[0].file_url == "receipts/abc.png"

    @pytest.mark.asyncio
    async def test_replace_keeps_file_reference(self, db_session, storage) -> None:
        created = await expenses_service.create_expense(db_session, ExpenseCreate(title="Lunch", amount=1200))
        await expenses_service.partial_update_expense(
            db_session, storage, created.id, ExpensePatch.model_validate({"fileUrl": "https://cdn.example.com/a.png"})
        )
        replaced = await expenses_service.replace_expense(
            db_session, storage, created.id, ExpenseReplace(title="Brunch", amount=1500)
        )
        assert (replaced.title, replaced.amount) == ("Brunch", 1500)
        assert replaced.file_url == "https://cdn.example.com/a.png"


class TestUpdatesAndDeletes:

    @pytest.mark.asyncio
    async def test_empty_patch_leaves_record_unchanged(self, db_session, storage) -> None:
        created = await expenses_service.create_expense(db_session, ExpenseCreate(title="Lunch", amount=1200))
        with pytest.raises(EmptyPatchError):
            await expenses_service.partial_update_expense(db_session, storage, created.id, ExpensePatch())
        fetched = await expenses_service.get_expense(db_session, storage, created.id)
        assert (fetched.title, fetched.amount) == ("Lunch", 1200)

    @pytest.mark.asyncio
    async def test_patch_missing_raises(self, db_session, storage) -> None:
        with pytest.raises(ExpenseNotFoundError):
            await expenses_service.partial_update_expense(
                db_session, storage, 999, ExpensePatch.model_validate({"amount": 5})
            )

    @pytest.mark.asyncio
    async def test_replace_missing_raises(self, db_session, storage) -> None:
        with pytest.raises(ExpenseNotFoundError):
            await expenses_service.replace_expense(db_session, storage, 999, ExpenseReplace(title="Lunch", amount=5))

    @pytest.mark.asyncio
    async def test_delete_returns_stored_row(self, db_session, storage) -> None:
        created = await expenses_service.create_expense(db_session, ExpenseCreate(title="Lunch", amount=1200))
        await expenses_service.partial_update_expense(
            db_session, storage, created.id, ExpensePatch.model_validate({"fileKey": "receipts/abc.png"})
        )
        deleted = await expenses_service.delete_expense(db_session, created.id)
        assert deleted.file_url == "receipts/abc.png"
        assert await _row_count(db_session) == 0

    @pytest.mark.asyncio
    async def test_delete_missing_keeps_row_count(self, db_session) -> None:
        await expenses_service.create_expense(db_session, ExpenseCreate(title="Lunch", amount=1200))
        with pytest.raises(ExpenseNotFoundError):
            await expenses_service.delete_expense(db_session, 999)
        assert await _row_count(db_session) == 1


class TestSignUpload:

    def test_sign_upload_descriptor(self, storage) -> None:
        descriptor = expenses_service.sign_upload(storage, "lunch.png", "image/png")
        assert descriptor.key.startswith("receipts/")
        assert descriptor.key in descriptor.upload_url

    def test_sign_upload_propagates_signer_failure(self, broken_storage) -> None:
        with pytest.raises(UpstreamSigningError):
            expenses_service.sign_upload(broken_storage, "lunch.png", "image/png")
