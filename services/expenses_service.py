"""Service layer for handling expense-related logic."""
import logging
from typing import List

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models.expense import Expense, ExpenseCreate, ExpensePatch, ExpenseReplace, UploadSignResponse
from models.tables import ExpenseRow
from services.storage_service import ObjectStorageGateway, SignedReference

logger = logging.getLogger(__name__)


class ExpenseNotFoundError(LookupError):
    def __init__(self, expense_id: int):
        super().__init__(f"Expense {expense_id} not found")
        self.expense_id = expense_id


class DuplicateExpenseError(ValueError):
    pass


class EmptyPatchError(ValueError):
    pass


# --- Read-path helpers ---

def with_signed_download_url(row: ExpenseRow, storage: ObjectStorageGateway) -> Expense:
    """Builds the API view of a row, signing its file reference when it is a bare key."""
    expense = Expense.model_validate(row)
    if not expense.file_url:
        return expense
    resolved = storage.resolve_download_url(expense.file_url)
    if isinstance(resolved, SignedReference):
        return expense.model_copy(update={"file_url": resolved.url})
    return expense


# --- Database Interaction Functions (Depend on session passed from route) ---

async def list_expenses(session: AsyncSession, storage: ObjectStorageGateway) -> List[Expense]:
    """Fetches all expenses ordered by id."""
    logger.info("Fetching all expenses...")
    try:
        result = await session.execute(select(ExpenseRow).order_by(ExpenseRow.id))
        rows = result.scalars().all()
    except SQLAlchemyError as e:
        logger.error(f"Database error fetching expenses: {e}")
        raise ConnectionError(f"Database error fetching expenses: {e}")
    logger.info(f"Fetched {len(rows)} expenses successfully.")
    return [with_signed_download_url(row, storage) for row in rows]


async def _get_row(session: AsyncSession, expense_id: int) -> ExpenseRow:
    try:
        row = await session.get(ExpenseRow, expense_id)
    except SQLAlchemyError as e:
        logger.error(f"Database error fetching expense {expense_id}: {e}")
        raise ConnectionError(f"Database error fetching expense: {e}")
    if row is None:
        raise ExpenseNotFoundError(expense_id)
    return row


async def get_expense(session: AsyncSession, storage: ObjectStorageGateway, expense_id: int) -> Expense:
    row = await _get_row(session, expense_id)
    return with_signed_download_url(row, storage)


async def create_expense(session: AsyncSession, data: ExpenseCreate) -> Expense:
    """Inserts a new expense. A client-supplied id is kept; otherwise the store assigns one."""
    if data.id is not None and await session.get(ExpenseRow, data.id) is not None:
        logger.warning(f"Rejected expense insert with duplicate id {data.id}.")
        raise DuplicateExpenseError(f"Expense {data.id} already exists")
    row = ExpenseRow(**data.model_dump(exclude_none=True))
    session.add(row)
    try:
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        logger.warning(f"Rejected expense insert with duplicate id {data.id}: {e.orig}")
        raise DuplicateExpenseError(f"Expense {data.id} already exists")
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Database error creating expense: {e}")
        raise ConnectionError(f"Database error creating expense: {e}")
    logger.info(f"Created expense {row.id} ('{row.title}', {row.amount}).")
    return Expense.model_validate(row)


async def _update_row(session: AsyncSession, expense_id: int, values: dict) -> ExpenseRow:
    """Applies column values to one row and returns the updated row, or raises not found."""
    statement = update(ExpenseRow).where(ExpenseRow.id == expense_id).values(**values).returning(ExpenseRow)
    try:
        result = await session.execute(statement)
        row = result.scalar_one_or_none()
        if row is None:
            await session.rollback()
            raise ExpenseNotFoundError(expense_id)
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Database error updating expense {expense_id}: {e}")
        raise ConnectionError(f"Database error updating expense: {e}")
    return row


async def replace_expense(
    session: AsyncSession,
    storage: ObjectStorageGateway,
    expense_id: int,
    data: ExpenseReplace,
) -> Expense:
    """Overwrites title and amount. The file reference is left as it is."""
    row = await _update_row(session, expense_id, data.model_dump())
    logger.info(f"Replaced expense {expense_id}.")
    return with_signed_download_url(row, storage)


async def partial_update_expense(
    session: AsyncSession,
    storage: ObjectStorageGateway,
    expense_id: int,
    patch: ExpensePatch,
) -> Expense:
    """
    Applies only the fields present in the patch.
    - An empty patch is rejected before touching the store.
    - `fileKey` / `fileUrl` set the stored reference; `fileUrl` wins when both are sent.
    - Concurrent patches on the same id are last-write-wins.
    """
    if patch.is_empty():
        raise EmptyPatchError("Empty patch")
    values = patch.to_update_values()
    row = await _update_row(session, expense_id, values)
    logger.info(f"Patched expense {expense_id} fields: {sorted(values)}")
    return with_signed_download_url(row, storage)


async def delete_expense(session: AsyncSession, expense_id: int) -> Expense:
    """Deletes one expense and returns it as stored. The linked blob, if any, is not removed."""
    statement = delete(ExpenseRow).where(ExpenseRow.id == expense_id).returning(ExpenseRow)
    try:
        result = await session.execute(statement)
        row = result.scalar_one_or_none()
        if row is None:
            await session.rollback()
            raise ExpenseNotFoundError(expense_id)
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Database error deleting expense {expense_id}: {e}")
        raise ConnectionError(f"Database error deleting expense: {e}")
    if row.file_url:
        logger.warning(f"Deleted expense {expense_id}; object '{row.file_url}' is no longer referenced.")
    else:
        logger.info(f"Deleted expense {expense_id}.")
    return Expense.model_validate(row)


def sign_upload(storage: ObjectStorageGateway, filename: str, content_type: str) -> UploadSignResponse:
    """Mints a one-time upload URL and object key. Signer failures propagate."""
    signed = storage.sign_upload(filename, content_type)
    return UploadSignResponse(upload_url=signed.url, key=signed.key)
