"""
Inspection API: exposes the store actions to the field UI.
Each login gets its own InspectionStore, addressed by the X-Session-Token header.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from inmobapp.errors import ConfigurationError, ValidationError
from inmobapp.models.inspection import ObservationStatus, ProcessType
from inmobapp.modules.api_client import get_last_call
from inmobapp.modules.rooms import STANDARD_ROOMS
from inmobapp.modules.store import InspectionStore
from inmobapp.modules.validation import contact_errors

logger = logging.getLogger(__name__)

router = APIRouter()

STATUS_BY_KIND = {
    "validation": 422,
    "blocked": 409,
    "session": 401,
    "logic": 400,
    "timeout": 504,
    "network": 502,
    "server": 502,
}


class LoginBody(BaseModel):
    credential: str


class SelectUnitBody(BaseModel):
    unit_id: str
    date: str | None = None


class ContactBody(BaseModel):
    owner_name: str | None = None
    owner_rut: str | None = None
    owner_phone: str | None = None
    owner_email: str | None = None


class ProcessTypeBody(BaseModel):
    process_type: ProcessType


class StartBody(BaseModel):
    unit_id: str
    date: str | None = None
    process_type: ProcessType


class ObservationBody(BaseModel):
    room_id: str
    description: str
    photo_url: str | None = None


class ObservationStatusBody(BaseModel):
    status: ObservationStatus


class SubmitBody(BaseModel):
    firmas: dict[str, str]


def _respond(result: dict) -> dict | JSONResponse:
    if result.get("ok"):
        return {k: (v.model_dump(mode="json") if isinstance(v, BaseModel) else v) for k, v in result.items()}
    return JSONResponse(result, status_code=STATUS_BY_KIND.get(result.get("kind"), 400))


def _units(units) -> list[dict]:
    return [u.model_dump(mode="json") for u in units]


def get_store(request: Request, x_session_token: str | None = Header(None)) -> InspectionStore:
    store = request.app.state.stores.get(x_session_token or "")
    if store is None or store.session is None:
        raise HTTPException(status_code=401, detail="Sesión no iniciada")
    return store


def _require_unit(store: InspectionStore, unit_id: str, unit_date: str | None):
    unit = store.find_unit(unit_id, unit_date)
    if unit is None:
        raise HTTPException(status_code=404, detail=f"Unidad {unit_id} no encontrada")
    return unit


# --- Session ---

@router.post("/session/login")
async def login(body: LoginBody, request: Request):
    store: InspectionStore = request.app.state.store_factory()
    try:
        result = await store.login(body.credential)
    except ConfigurationError as e:
        await store.dispose()
        logger.error("Login rejected, backend not configured: %s", e.message)
        raise HTTPException(status_code=503, detail=e.message)
    if not result["ok"]:
        await store.dispose()
        return _respond(result)

    token = uuid.uuid4().hex
    request.app.state.stores[token] = store
    return {**result, "token": token}


@router.post("/session/logout")
async def logout(request: Request, x_session_token: str | None = Header(None)):
    store = request.app.state.stores.pop(x_session_token or "", None)
    if store is not None:
        await store.dispose()
    return {"ok": True}


@router.get("/session")
async def get_session(store: InspectionStore = Depends(get_store)):
    return {
        "session": store.session.model_dump(),
        "connection_status": store.connection_status.value,
        "is_loading_data": store.is_loading_data,
        "data_error": store.data_error,
    }


# --- Agenda ---

@router.get("/agenda/today")
async def agenda_today(store: InspectionStore = Depends(get_store)):
    return {"units": _units(store.get_scheduled_today()), "data_error": store.data_error}


@router.get("/agenda/upcoming")
async def agenda_upcoming(days: int | None = None, store: InspectionStore = Depends(get_store)):
    return {"units": _units(store.get_upcoming(days)), "data_error": store.data_error}


@router.get("/agenda/projects")
async def agenda_projects(store: InspectionStore = Depends(get_store)):
    return {"projects": [p.model_dump() for p in store.get_projects_from_agenda()]}


@router.post("/agenda/refresh")
async def agenda_refresh(store: InspectionStore = Depends(get_store)):
    return _respond(await store.fetch_data())


@router.get("/rooms")
async def rooms():
    return {"rooms": [r.model_dump() for r in STANDARD_ROOMS]}


# --- Process ---

@router.get("/process")
async def get_process(store: InspectionStore = Depends(get_store)):
    return {
        "selected_unit": store.selected_unit.model_dump(mode="json") if store.selected_unit else None,
        "process_type": store.process_type.value if store.process_type else None,
        "observations": [o.model_dump(mode="json") for o in store.observations],
    }


@router.post("/process/select")
async def select_unit(body: SelectUnitBody, store: InspectionStore = Depends(get_store)):
    unit = _require_unit(store, body.unit_id, body.date)
    if unit.is_handover_generated:
        return _respond({"ok": False, "error": "Esta unidad ya cuenta con acta generada.", "kind": "blocked"})
    store.set_selected_unit(unit)
    return {"ok": True, "unit": unit.model_dump(mode="json")}


@router.patch("/process/contact")
async def update_contact(body: ContactBody, store: InspectionStore = Depends(get_store)):
    if store.selected_unit is None:
        return _respond({"ok": False, "error": "No hay unidad seleccionada", "kind": "validation"})
    updates = body.model_dump(exclude_none=True)
    candidate = store.selected_unit.model_copy(update=updates)
    errors = contact_errors(candidate.owner_rut, candidate.owner_email, candidate.owner_phone)
    if errors:
        return _respond({"ok": False, "error": "Datos de contacto inválidos", "kind": "validation", "fields": errors})
    store.update_selected_unit(updates)
    return {"ok": True, "unit": store.selected_unit.model_dump(mode="json")}


@router.post("/process/type")
async def set_process_type(body: ProcessTypeBody, store: InspectionStore = Depends(get_store)):
    store.set_process_type(body.process_type)
    return {"ok": True, "process_type": body.process_type.value}


@router.post("/process/start")
async def start_process(body: StartBody, store: InspectionStore = Depends(get_store)):
    unit = _require_unit(store, body.unit_id, body.date)
    return _respond(await store.start_process(unit, body.process_type))


@router.post("/process/observations")
async def add_observation(body: ObservationBody, store: InspectionStore = Depends(get_store)):
    try:
        observation = store.add_observation(body.room_id, body.description, body.photo_url)
    except ValidationError as e:
        return _respond({"ok": False, "error": e.message, "kind": e.kind, "field": e.field})
    return {"ok": True, "observation": observation.model_dump(mode="json")}


@router.delete("/process/observations/{observation_id}")
async def remove_observation(observation_id: str, store: InspectionStore = Depends(get_store)):
    if not store.remove_observation(observation_id):
        raise HTTPException(status_code=404, detail="Observación no encontrada")
    return {"ok": True}


@router.patch("/process/observations/{observation_id}")
async def update_observation(observation_id: str, body: ObservationStatusBody, store: InspectionStore = Depends(get_store)):
    if not store.update_observation_status(observation_id, body.status):
        raise HTTPException(status_code=404, detail="Observación no encontrada")
    return {"ok": True}


@router.post("/process/submit")
async def submit(body: SubmitBody, store: InspectionStore = Depends(get_store)):
    return _respond(await store.submit_inspection(body.firmas))


@router.post("/process/clear")
async def clear(store: InspectionStore = Depends(get_store)):
    store.clear_session()
    return {"ok": True}


@router.get("/process/acta")
async def acta_status(store: InspectionStore = Depends(get_store)):
    return _respond(await store.get_acta_status())


# --- Diagnostics ---

@router.get("/connection")
async def connection(store: InspectionStore = Depends(get_store)):
    status = await store.check_connection()
    return {"connection_status": status.value}


@router.get("/diagnostics/last-call")
async def last_call():
    return {"last_call": get_last_call()}
