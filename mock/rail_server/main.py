from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
import os
import random

app = FastAPI(title="Mock Rail Server", version="1.0.0")
# RAIL_DOWN=name1,name2 answers 503 for those rails; RAIL_DECLINE declines with insufficient funds
DOWN = {r.strip() for r in os.getenv("RAIL_DOWN", "").split(",") if r.strip()}
DECLINE = {r.strip() for r in os.getenv("RAIL_DECLINE", "").split(",") if r.strip()}
FAILURE_RATE = float(os.getenv("RAIL_FAILURE_RATE", "0"))


class RailCall(BaseModel):
    amount_cents: int


@app.get("/health")
def health(): return {"status": "ok"}

@app.post("/rails/{name}/{action}")
def call_rail(name: str, action: str, body: RailCall):
    if action not in ("top_up", "charge"):
        raise HTTPException(status_code=404, detail="unknown action")
    if name in DOWN:
        raise HTTPException(status_code=503, detail="rail unavailable")
    if name in DECLINE:
        return {"success": False, "error": "Insufficient balance on connector", "failure_type": "insufficient_funds"}
    if random.random() < FAILURE_RATE:
        return {"success": False, "error": "Connection timeout", "failure_type": "connector_unavailable"}
    return {"success": True, "error": None, "failure_type": None}
