import os
import logging
from datetime import datetime
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from typing import List, Optional, Dict, Any

from database import (
    db,
    create_document,
    get_documents,
    get_document,
    update_document,
    update_documents,
    delete_document,
    delete_documents,
)
from dosage import format_dosage
from medication_due import (
    DueInfo,
    NextDoseProgress,
    get_due_info,
    get_next_dose_progress,
    iter_time_tokens,
    parse_schedule_days,
    parse_timestamp,
    weekday_of,
)
from reminders import MAX_LOOKAHEAD_HOURS, Reminder, reminders_for
from schemas import Group, GroupUpdate, Medication, MedicationUpdate, Intake, TrackIntake

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Pill Tracker API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/")
def read_root():
    return {"message": "Pill Tracker Backend Running"}

@app.get("/test")
def database_status():
    response = {
        "backend": "✅ Running",
        "database": "⚠️  Available but not initialized",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    if db is None:
        return response

    response["connection_status"] = "Connected"
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
    except Exception as e:
        logger.error("Database check failed: %s", e)
        response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    return response

# Helper models
class MedicationCreate(Medication):
    pass

class GroupCreate(Group):
    pass

# Read models mirror stored rows as they are; validation happens on write.
class IntakeOut(BaseModel):
    id: str
    medication_id: Any = None
    taken_at: Any = None

class MedicationOut(BaseModel):
    id: str
    name: Any = None
    dosage_amount: Any = None
    dosage_unit: Any = None
    notes: Any = None
    enable_notifications: Any = True
    interval_type: Any = None
    schedule_days: Any = None
    schedule_times: Any = None
    group_id: Optional[str] = None
    active: Any = True
    intakes: List[IntakeOut] = []
    last_intake: Optional[IntakeOut] = None

class GroupOut(BaseModel):
    id: str
    name: Any = None
    description: Any = None
    medications: List[MedicationOut] = []

class MedicationStatus(BaseModel):
    medication_id: str
    name: Any = None
    due: DueInfo
    progress: NextDoseProgress


def resolve_now(now: Optional[str] = None) -> datetime:
    """The instant to evaluate at: `now` query param, else NOW_OVERRIDE, else the clock.

    Naive timestamps are read as server-local time.
    """
    value = now or os.getenv("NOW_OVERRIDE")
    if not value:
        return datetime.now()
    parsed = parse_timestamp(value)
    if parsed is None:
        raise HTTPException(status_code=400, detail="INVALID_DATE")
    return parsed


def _with_id(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc["id"] = str(doc.pop("_id"))
    return doc


def _intakes_for(medication_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    docs = get_documents("intake", {"medication_id": medication_id}, limit=limit, sort=[("taken_at", -1)])
    return [_with_id(d) for d in docs]


def _medication_view(doc: Dict[str, Any], intake_limit: Optional[int] = None) -> MedicationOut:
    """Medication document plus its intakes, newest first.

    Due evaluation only needs the newest intake, so it passes intake_limit=1.
    """
    d = _with_id(doc)
    intakes = _intakes_for(d["id"], limit=intake_limit)
    d["intakes"] = intakes
    d["last_intake"] = intakes[0] if intakes else None
    if d.get("group_id") is not None:
        d["group_id"] = str(d["group_id"])
    return MedicationOut(**d)


def _load_medication(medication_id: str, intake_limit: Optional[int] = None) -> MedicationOut:
    doc = get_document("medication", medication_id)
    if doc is None:
        raise HTTPException(status_code=404, detail="Medication not found")
    return _medication_view(doc, intake_limit)


def _require_group(group_id: Optional[str]):
    if group_id is not None and get_document("group", group_id) is None:
        raise HTTPException(status_code=404, detail="Group not found")


def _group_view(doc: Dict[str, Any]) -> GroupOut:
    d = _with_id(doc)
    meds = get_documents("medication", {"group_id": d["id"]})
    d["medications"] = [_medication_view(m) for m in meds]
    return GroupOut(**d)


def _load_group(group_id: str) -> GroupOut:
    doc = get_document("group", group_id)
    if doc is None:
        raise HTTPException(status_code=404, detail="Group not found")
    return _group_view(doc)

# Medication routes
@app.post("/api/medications", response_model=dict)
async def create_medication(payload: MedicationCreate):
    try:
        _require_group(payload.group_id)
        med_id = create_document("medication", payload)
        logger.info("Created medication %s (%s)", med_id, payload.name)
        return {"id": med_id}
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Failed to create medication")
        raise HTTPException(status_code=500, detail=str(e))

@app.get("/api/medications", response_model=List[MedicationOut])
async def list_medications(group_id: Optional[str] = None):
    try:
        filt: Dict[str, Any] = {}
        if group_id:
            filt["group_id"] = group_id
        return [_medication_view(d) for d in get_documents("medication", filt)]
    except Exception as e:
        logger.exception("Failed to list medications")
        raise HTTPException(status_code=500, detail=str(e))

@app.get("/api/medications/{medication_id}", response_model=MedicationOut)
async def read_medication(medication_id: str):
    try:
        return _load_medication(medication_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Failed to read medication %s", medication_id)
        raise HTTPException(status_code=500, detail=str(e))

@app.patch("/api/medications/{medication_id}", response_model=MedicationOut)
async def update_medication(medication_id: str, payload: MedicationUpdate):
    try:
        _require_group(payload.group_id)
        if not update_document("medication", medication_id, payload):
            raise HTTPException(status_code=404, detail="Medication not found")
        logger.info("Updated medication %s: %s", medication_id, sorted(payload.model_fields_set))
        return _load_medication(medication_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Failed to update medication %s", medication_id)
        raise HTTPException(status_code=500, detail=str(e))

@app.delete("/api/medications/{medication_id}", response_model=dict)
async def remove_medication(medication_id: str):
    try:
        if get_document("medication", medication_id) is None:
            raise HTTPException(status_code=404, detail="Medication not found")
        removed_intakes = delete_documents("intake", {"medication_id": medication_id})
        delete_document("medication", medication_id)
        logger.info("Deleted medication %s and %d intakes", medication_id, removed_intakes)
        return {"id": medication_id, "deleted_intakes": removed_intakes}
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Failed to delete medication %s", medication_id)
        raise HTTPException(status_code=500, detail=str(e))

# Group routes
@app.post("/api/groups", response_model=dict)
async def create_group(payload: GroupCreate):
    try:
        group_id = create_document("group", payload)
        logger.info("Created group %s (%s)", group_id, payload.name)
        return {"id": group_id}
    except Exception as e:
        logger.exception("Failed to create group")
        raise HTTPException(status_code=500, detail=str(e))

@app.get("/api/groups", response_model=List[GroupOut])
async def list_groups():
    try:
        return [_group_view(d) for d in get_documents("group")]
    except Exception as e:
        logger.exception("Failed to list groups")
        raise HTTPException(status_code=500, detail=str(e))

@app.get("/api/groups/{group_id}", response_model=GroupOut)
async def read_group(group_id: str):
    try:
        return _load_group(group_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Failed to read group %s", group_id)
        raise HTTPException(status_code=500, detail=str(e))

@app.patch("/api/groups/{group_id}", response_model=GroupOut)
async def update_group(group_id: str, payload: GroupUpdate):
    try:
        if not update_document("group", group_id, payload):
            raise HTTPException(status_code=404, detail="Group not found")
        logger.info("Updated group %s: %s", group_id, sorted(payload.model_fields_set))
        return _load_group(group_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Failed to update group %s", group_id)
        raise HTTPException(status_code=500, detail=str(e))

@app.delete("/api/groups/{group_id}", response_model=dict)
async def remove_group(group_id: str):
    """Delete a group; its medications stay and become ungrouped."""
    try:
        if get_document("group", group_id) is None:
            raise HTTPException(status_code=404, detail="Group not found")
        ungrouped = update_documents("medication", {"group_id": group_id}, {"group_id": None})
        delete_document("group", group_id)
        logger.info("Deleted group %s, ungrouped %d medications", group_id, ungrouped)
        return {"id": group_id, "ungrouped_medications": ungrouped}
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Failed to delete group %s", group_id)
        raise HTTPException(status_code=500, detail=str(e))

# Intake routes
@app.post("/api/medications/{medication_id}/intakes", response_model=IntakeOut)
async def track_intake(medication_id: str, payload: Optional[TrackIntake] = None, now: Optional[str] = None):
    taken_at = payload.taken_at if payload and payload.taken_at else resolve_now(now).isoformat()
    try:
        if get_document("medication", medication_id) is None:
            raise HTTPException(status_code=404, detail="Medication not found")
        intake = Intake(medication_id=medication_id, taken_at=taken_at)
        intake_id = create_document("intake", intake)
        logger.info("Tracked intake %s for medication %s at %s", intake_id, medication_id, intake.taken_at)
        return IntakeOut(id=intake_id, **intake.model_dump())
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Failed to track intake for %s", medication_id)
        raise HTTPException(status_code=500, detail=str(e))

@app.post("/api/intakes", response_model=dict)
async def log_intake(payload: Intake):
    try:
        intake_id = create_document("intake", payload)
        return {"id": intake_id}
    except Exception as e:
        logger.exception("Failed to log intake")
        raise HTTPException(status_code=500, detail=str(e))

@app.get("/api/intakes", response_model=List[IntakeOut])
async def list_intakes(medication_id: Optional[str] = None, date: Optional[str] = None):
    """Intakes newest first; `date` matches the UTC calendar date of taken_at."""
    try:
        filt: Dict[str, Any] = {}
        if medication_id:
            filt["medication_id"] = medication_id
        docs = get_documents("intake", filt, sort=[("taken_at", -1)])
        result: List[IntakeOut] = []
        for d in docs:
            if date and not str(d.get("taken_at", "")).startswith(date):
                continue
            result.append(IntakeOut(**_with_id(d)))
        return result
    except Exception as e:
        logger.exception("Failed to list intakes")
        raise HTTPException(status_code=500, detail=str(e))

# Due status
@app.get("/api/medications/{medication_id}/due", response_model=DueInfo)
async def medication_due(medication_id: str, now: Optional[str] = None):
    at = resolve_now(now)
    try:
        return get_due_info(_load_medication(medication_id, intake_limit=1), at)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Failed to evaluate due status for %s", medication_id)
        raise HTTPException(status_code=500, detail=str(e))

@app.get("/api/medications/{medication_id}/progress", response_model=NextDoseProgress)
async def medication_progress(medication_id: str, now: Optional[str] = None):
    at = resolve_now(now)
    try:
        return get_next_dose_progress(_load_medication(medication_id, intake_limit=1), at)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Failed to evaluate progress for %s", medication_id)
        raise HTTPException(status_code=500, detail=str(e))

@app.get("/api/due", response_model=List[MedicationStatus])
async def due_overview(now: Optional[str] = None):
    at = resolve_now(now)
    try:
        statuses = []
        for doc in get_documents("medication", {"active": True}):
            m = _medication_view(doc, intake_limit=1)
            statuses.append(MedicationStatus(
                medication_id=m.id,
                name=m.name,
                due=get_due_info(m, at),
                progress=get_next_dose_progress(m, at),
            ))
        statuses.sort(key=lambda s: (not s.due.is_due, str(s.name or "").lower()))
        return statuses
    except Exception as e:
        logger.exception("Failed to build due overview")
        raise HTTPException(status_code=500, detail=str(e))

# Schedule endpoint for a given date
@app.get("/api/schedule")
async def get_schedule(date: Optional[str] = None, now: Optional[str] = None):
    if date:
        target = parse_timestamp(date)
        if target is None:
            raise HTTPException(status_code=400, detail="INVALID_DATE")
    else:
        target = resolve_now(now)
    weekday = weekday_of(target)  # 0=Sun..6=Sat
    try:
        meds = get_documents("medication", {"active": True})
        items = []
        for m in meds:
            if weekday not in parse_schedule_days(m.get("schedule_days")):
                continue
            for token, slot in iter_time_tokens(m.get("schedule_times")):
                items.append({
                    "medication_id": str(m.get("_id")),
                    "name": m.get("name"),
                    "dosage": format_dosage(m.get("dosage_amount", ""), m.get("dosage_unit", "")),
                    "time": token,
                    "_order": (slot.day_offset, slot.hour, slot.minute),
                })
        items.sort(key=lambda x: x["_order"])
        for item in items:
            del item["_order"]
        return {"date": target.date().isoformat(), "weekday": weekday, "items": items}
    except Exception as e:
        logger.exception("Failed to build schedule")
        raise HTTPException(status_code=500, detail=str(e))

# Upcoming reminders for the notification scheduler
@app.get("/api/reminders/upcoming", response_model=List[Reminder])
async def upcoming(
    hours: float = Query(24, gt=0, le=MAX_LOOKAHEAD_HOURS),
    now: Optional[str] = None,
):
    at = resolve_now(now)
    try:
        meds = [_with_id(d) for d in get_documents("medication", {"active": True})]
        return reminders_for(meds, at, hours)
    except Exception as e:
        logger.exception("Failed to expand reminders")
        raise HTTPException(status_code=500, detail=str(e))

if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
