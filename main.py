import logging
import math
from typing import Optional

from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

import actions
from auth import bearer_token
from config import get_settings
from database import SessionLocal
from errors import ActionResult, ErrorKind

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Dashboard")

STATUS_BY_KIND = {
    ErrorKind.unauthenticated: 401,
    ErrorKind.not_found: 404,
    ErrorKind.validation_failed: 422,
    ErrorKind.rate_limited: 429,
    ErrorKind.conflict: 409,
    ErrorKind.unknown: 500,
}


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def respond(result: ActionResult, success_status: int = 200) -> JSONResponse:
    if result.success:
        return JSONResponse(result.to_dict(), status_code=success_status)
    headers = {}
    if result.error.retry_after is not None:
        headers["Retry-After"] = str(max(1, math.ceil(result.error.retry_after)))
    return JSONResponse(
        result.to_dict(),
        status_code=STATUS_BY_KIND[result.error.kind],
        headers=headers,
    )


def token_from_request(request: Request) -> Optional[str]:
    return bearer_token(request.headers.get("Authorization"))


async def json_body(request: Request):
    try:
        return await request.json()
    except ValueError:
        return None


@app.post("/api/users/me")
async def api_sync_user(request: Request, db: Session = Depends(get_db)):
    payload = await json_body(request)
    return respond(actions.sync_user(db, token_from_request(request), payload))


@app.get("/api/accounts")
def api_list_accounts(request: Request, db: Session = Depends(get_db)):
    return respond(actions.list_accounts(db, token_from_request(request)))


@app.post("/api/accounts")
async def api_create_account(request: Request, db: Session = Depends(get_db)):
    payload = await json_body(request)
    result = actions.create_account(db, token_from_request(request), payload)
    return respond(result, success_status=201)


@app.get("/api/accounts/{account_id}")
def api_get_account(account_id: int, request: Request, db: Session = Depends(get_db)):
    return respond(actions.get_account(db, token_from_request(request), account_id))


@app.post("/api/accounts/{account_id}/default")
def api_set_default_account(
    account_id: int, request: Request, db: Session = Depends(get_db)
):
    return respond(
        actions.set_default_account(db, token_from_request(request), account_id)
    )


@app.get("/api/accounts/{account_id}/chart")
def api_account_chart(account_id: int, request: Request, db: Session = Depends(get_db)):
    range_key = request.query_params.get("range")
    return respond(
        actions.account_chart(db, token_from_request(request), account_id, range_key)
    )


@app.get("/api/transactions")
def api_list_transactions(request: Request, db: Session = Depends(get_db)):
    return respond(actions.list_transactions(db, token_from_request(request)))


@app.post("/api/transactions")
async def api_create_transaction(request: Request, db: Session = Depends(get_db)):
    payload = await json_body(request)
    result = actions.create_transaction(db, token_from_request(request), payload)
    return respond(result, success_status=201)


@app.post("/api/transactions/bulk-delete")
async def api_bulk_delete(request: Request, db: Session = Depends(get_db)):
    payload = await json_body(request)
    return respond(
        actions.bulk_delete_transactions(db, token_from_request(request), payload)
    )


@app.get("/api/transactions/{transaction_id}")
def api_get_transaction(
    transaction_id: int, request: Request, db: Session = Depends(get_db)
):
    return respond(
        actions.get_transaction(db, token_from_request(request), transaction_id)
    )


@app.put("/api/transactions/{transaction_id}")
async def api_update_transaction(
    transaction_id: int, request: Request, db: Session = Depends(get_db)
):
    payload = await json_body(request)
    return respond(
        actions.update_transaction(
            db, token_from_request(request), transaction_id, payload
        )
    )


@app.get("/api/budget")
def api_get_budget(request: Request, db: Session = Depends(get_db)):
    account_id = request.query_params.get("account_id")
    return respond(actions.get_budget(db, token_from_request(request), account_id))


@app.put("/api/budget")
async def api_update_budget(request: Request, db: Session = Depends(get_db)):
    payload = await json_body(request)
    return respond(actions.update_budget(db, token_from_request(request), payload))


@app.get("/api/dashboard")
def api_dashboard(request: Request, db: Session = Depends(get_db)):
    account_id = request.query_params.get("account_id")
    return respond(
        actions.dashboard_overview(db, token_from_request(request), account_id)
    )


@app.post("/api/receipts/scan")
async def api_scan_receipt(
    request: Request,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
):
    image = await file.read()
    return respond(
        actions.scan_receipt(
            db, token_from_request(request), image, file.content_type or ""
        )
    )


@app.post("/api/recurring/process")
def api_process_recurring(request: Request, db: Session = Depends(get_db)):
    return respond(actions.process_recurring(db, token_from_request(request)))


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
