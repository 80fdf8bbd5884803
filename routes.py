"""API Routes for expenses and receipt uploads"""
import logging
from typing import Annotated, Any, AsyncIterator, Dict

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database import ping_db
from models.expense import ErrorEnvelope, ExpenseCreate, ExpensePatch, ExpenseReplace, UploadSignRequest
from services import expenses_service
from services.expenses_service import DuplicateExpenseError, EmptyPatchError, ExpenseNotFoundError
from services.storage_service import ObjectStorageGateway, UpstreamSigningError
from utils.rate_limit import SIGN_RATE_LIMIT, limiter

router = APIRouter()
logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorEnvelope, "description": "Validation failed"},
    404: {"model": ErrorEnvelope, "description": "Expense not found"},
}


def ok(data: Any, status_code: int = 200) -> JSONResponse:
    """Wraps a payload in the success envelope."""
    return JSONResponse(status_code=status_code, content={"data": jsonable_encoder(data, by_alias=True)})


# --- Dependency Functions ---

async def get_db_session(request: Request) -> AsyncIterator[AsyncSession]:
    """Dependency that opens one database session per request."""
    session_factory: async_sessionmaker[AsyncSession] = getattr(request.state, "session_factory", None)
    if session_factory is None:
        logger.error("Session factory not found in application state. Check database startup.")
        raise HTTPException(status_code=503, detail="Database service not available.")
    async with session_factory() as session:
        yield session


def get_storage(request: Request) -> ObjectStorageGateway:
    """Dependency to get the object storage gateway from the request state."""
    storage = getattr(request.state, "storage", None)
    if storage is None:
        logger.error("Storage gateway not found in application state.")
        raise HTTPException(status_code=503, detail="Storage service not available.")
    return storage


SessionDep = Annotated[AsyncSession, Depends(get_db_session)]
StorageDep = Annotated[ObjectStorageGateway, Depends(get_storage)]


def _not_found(e: ExpenseNotFoundError) -> HTTPException:
    logger.info(str(e))
    return HTTPException(status_code=404, detail="Not found")


def _unavailable(e: ConnectionError) -> HTTPException:
    logger.error(f"Database connection error: {e}")
    return HTTPException(status_code=503, detail="Database service not available.")


# --- API Routes ---

@router.get("/expenses", summary="List Expenses", description="Returns every expense, with receipt keys turned into signed download URLs.")
async def list_expenses(session: SessionDep, storage: StorageDep) -> JSONResponse:
    logger.info("GET /expenses endpoint called.")
    try:
        expenses = await expenses_service.list_expenses(session, storage)
    except ConnectionError as ce:
        raise _unavailable(ce)
    return ok({"expenses": expenses})


@router.get("/expenses/{expense_id}", summary="Get Expense", responses=ERROR_RESPONSES)
async def get_expense(expense_id: int, session: SessionDep, storage: StorageDep) -> JSONResponse:
    logger.info(f"GET /expenses/{expense_id} endpoint called.")
    try:
        expense = await expenses_service.get_expense(session, storage, expense_id)
    except ExpenseNotFoundError as e:
        raise _not_found(e)
    except ConnectionError as ce:
        raise _unavailable(ce)
    return ok({"expense": expense})


@router.post("/expenses", status_code=201, summary="Create Expense", responses=ERROR_RESPONSES)
async def create_expense(body: ExpenseCreate, session: SessionDep) -> JSONResponse:
    logger.info(f"POST /expenses endpoint called for '{body.title}'.")
    try:
        created = await expenses_service.create_expense(session, body)
    except DuplicateExpenseError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ConnectionError as ce:
        raise _unavailable(ce)
    return ok({"expense": created}, status_code=201)


@router.put("/expenses/{expense_id}", status_code=201, summary="Replace Expense", responses=ERROR_RESPONSES)
async def replace_expense(expense_id: int, body: ExpenseReplace, session: SessionDep, storage: StorageDep) -> JSONResponse:
    logger.info(f"PUT /expenses/{expense_id} endpoint called.")
    try:
        updated = await expenses_service.replace_expense(session, storage, expense_id, body)
    except ExpenseNotFoundError as e:
        raise _not_found(e)
    except ConnectionError as ce:
        raise _unavailable(ce)
    return ok({"expense": updated}, status_code=201)


@router.patch("/expenses/{expense_id}", summary="Update Expense", responses=ERROR_RESPONSES)
async def patch_expense(expense_id: int, body: ExpensePatch, session: SessionDep, storage: StorageDep) -> JSONResponse:
    """
    Partial update. Used by the upload flow to attach `fileKey` once the
    receipt bytes are in object storage.
    """
    logger.info(f"PATCH /expenses/{expense_id} endpoint called with fields {sorted(body.model_fields_set)}.")
    try:
        updated = await expenses_service.partial_update_expense(session, storage, expense_id, body)
    except EmptyPatchError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ExpenseNotFoundError as e:
        raise _not_found(e)
    except ConnectionError as ce:
        raise _unavailable(ce)
    return ok({"expense": updated})


@router.delete("/expenses/{expense_id}", summary="Delete Expense", responses=ERROR_RESPONSES)
async def delete_expense(expense_id: int, session: SessionDep) -> JSONResponse:
    logger.warning(f"DELETE /expenses/{expense_id} endpoint called.")
    try:
        deleted = await expenses_service.delete_expense(session, expense_id)
    except ExpenseNotFoundError as e:
        raise _not_found(e)
    except ConnectionError as ce:
        raise _unavailable(ce)
    return ok({"deleted": deleted})


@router.post("/upload/sign", summary="Sign Receipt Upload", description="Issues a one-time URL for uploading a receipt straight to object storage.")
@limiter.limit(SIGN_RATE_LIMIT)
async def sign_upload(request: Request, body: UploadSignRequest, storage: StorageDep) -> JSONResponse:
    logger.info(f"POST /upload/sign endpoint called for '{body.filename}' ({body.content_type}).")
    try:
        descriptor = expenses_service.sign_upload(storage, body.filename, body.content_type)
    except UpstreamSigningError as e:
        logger.error(f"Upload signing failed: {e}")
        raise HTTPException(status_code=502, detail="Failed to sign upload URL.")
    return ok(descriptor)


@router.get("/health", summary="Health Check")
async def health(request: Request, storage: StorageDep) -> JSONResponse:
    engine = getattr(request.state, "engine", None)
    database_ok = engine is not None and await ping_db(engine)
    payload: Dict[str, Any] = {
        "status": "ok" if database_ok and storage.is_configured else "degraded",
        "database": database_ok,
        "storage": storage.is_configured,
    }
    return ok(payload)
