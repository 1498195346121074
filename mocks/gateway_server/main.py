from fastapi import FastAPI, Header, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from typing import Dict, Optional
import uuid

# In-memory fake of the payment gateway contract, for local runs and e2e tests
app = FastAPI(title="Mock Payment Gateway", version="1.0.0")
TRANSACTIONS: Dict[str, dict] = {}


class StatusUpdate(BaseModel):
    status: str


def _authorize(merchant_id: Optional[str], secret: Optional[str]) -> None:
    if not merchant_id or not secret:
        raise HTTPException(status_code=401, detail="missing merchant credentials")


@app.get("/health")
def health(): return {"status": "ok"}

@app.post("/transaction/process")
def process(body: dict, x_merchantid: Optional[str] = Header(None), x_secret: Optional[str] = Header(None)):
    _authorize(x_merchantid, x_secret)
    amount = (body.get("paymentDetails") or {}).get("amount")
    if not isinstance(amount, int) or amount <= 0:
        return _error(400, "invalid amount")
    transaction_id = str(uuid.uuid4())
    TRANSACTIONS[transaction_id] = {"status": "PENDING", "merchant": x_merchantid, **body}
    return {
        "transactionId": transaction_id,
        "redirect": f"https://pay.mock/form/{transaction_id}",
        "status": "PENDING",
    }

@app.get("/transaction/{transaction_id}")
def status(transaction_id: str, x_merchantid: Optional[str] = Header(None), x_secret: Optional[str] = Header(None)):
    _authorize(x_merchantid, x_secret)
    txn = TRANSACTIONS.get(transaction_id)
    if txn is None:
        return _error(404, "transaction not found")
    return {"id": transaction_id, "status": txn["status"]}

# Test hook: move a transaction to CONFIRMED / CANCELED / CHARGEBACKED
@app.post("/mock/transaction/{transaction_id}/status")
def set_status(transaction_id: str, update: StatusUpdate):
    if transaction_id not in TRANSACTIONS:
        raise HTTPException(status_code=404, detail="transaction not found")
    TRANSACTIONS[transaction_id]["status"] = update.status
    return {"id": transaction_id, "status": update.status}


def _error(status_code: int, message: str):
    return JSONResponse(status_code=status_code, content={"message": message})
