"""
Inspection Store: single source of truth for one inspector session.

Holds the inspector identity, the normalized agenda (units/projects), the
in-progress process (selected unit, process type, observations) and the
backend connection state. Agenda views are derived on every call.

Unit process lifecycle:
    PROGRAMADA -> start_process -> EN_PROCESO -> submit_inspection -> REALIZADO
    PROGRAMADA -> CANCELADA (set by the backend, only observed here)
Local state changes only after the backend acknowledges an action.
"""

import logging
import uuid
from collections.abc import Callable
from datetime import date

from inmobapp.config import Settings, get_settings
from inmobapp.errors import ApiError, ConfigurationError, InmobAppError, ValidationError
from inmobapp.models.inspection import (
    ConnectionStatus,
    Observation,
    ObservationStatus,
    ProcessStatus,
    ProcessType,
    Project,
    Session,
    Unit,
)
from inmobapp.modules import rut
from inmobapp.modules.api_client import ApiClient
from inmobapp.modules.dates import is_same_calendar_day, is_within_next_n_days, parse_date, time_sort_key
from inmobapp.modules.device import get_device_id
from inmobapp.modules.rooms import room_name
from inmobapp.modules.roster import find_inspector, parse_csv_rows
from inmobapp.modules.unit_normalizer import normalize_rows, parse_handover_flag
from inmobapp.modules.validation import contact_errors, normalize_credential

logger = logging.getLogger(__name__)

INACTIVE_STATES = {"inactivo", "inactiva", "inactive", "no", "false", "0", "suspendido", "suspendida"}

ROW_KEYS = ("data", "assignments", "asignaciones", "rows", "units")


def _failure(error: InmobAppError, **extra) -> dict:
    result = {"ok": False, "error": error.message, "kind": error.kind}
    if getattr(error, "status_code", None):
        result["status_code"] = error.status_code
    if getattr(error, "field", None):
        result["field"] = error.field
    result.update(extra)
    return result


def _blocked(message: str) -> dict:
    return {"ok": False, "error": message, "kind": "blocked"}


def _extract_rows(response: dict) -> list:
    for key in ROW_KEYS:
        value = response.get(key)
        if isinstance(value, list):
            return value
    return []


def _extract(response: dict, *keys: str):
    """First non-empty value among keys, looking in the body and in its `data` object."""
    data = response.get("data") if isinstance(response.get("data"), dict) else {}
    for key in keys:
        for source in (response, data):
            value = source.get(key)
            if value not in (None, ""):
                return value
    return None


class InspectionStore:
    def __init__(
        self,
        settings: Settings | None = None,
        client: ApiClient | None = None,
        device_id: str | None = None,
        today: Callable[[], date] | None = None,
    ):
        self.settings = settings or get_settings()
        self.client = client or ApiClient(self.settings)
        self._owns_client = client is None
        self.device_id = device_id or get_device_id(self.settings.device_id_path)
        self._today = today or date.today

        self.session: Session | None = None
        self.units: list[Unit] = []
        self.projects: list[Project] = []
        self.selected_unit: Unit | None = None
        self.process_type: ProcessType | None = None
        self.observations: list[Observation] = []
        self.is_loading_data = False
        self.data_error: str | None = None
        self.connection_status = ConnectionStatus.IDLE

    @property
    def csv_mode(self) -> bool:
        return not self.settings.webapp_url and bool(self.settings.roster_csv_url)

    # --- Session ---

    async def login(self, credential: str) -> dict:
        """Authenticate, then load assignments. An assignments failure does not undo the login."""
        try:
            lookup = normalize_credential(credential)
        except ValidationError as e:
            return _failure(e)

        if self.csv_mode and not self.settings.units_csv_url:
            raise ConfigurationError("UNITS_CSV_URL no está configurada")

        try:
            if self.csv_mode:
                session = await self._login_from_roster(lookup)
            else:
                response = await self.client.call(self.settings.login_action, **lookup)
                session = self._session_from_response(response, lookup)
        except ApiError as e:
            logger.warning("Login failed for %s: %s", lookup, e.message)
            return _failure(e)

        if session is None:
            return {"ok": False, "error": "RUT no encontrado", "kind": "logic"}

        self.session = session
        logger.info("Inspector %s (%s) logged in", session.name, session.email or session.rut)

        fetched = await self.fetch_data()
        return {
            "ok": True,
            "session": session.model_dump(),
            "assignments_loaded": fetched["ok"],
            "assignments_error": fetched.get("error"),
        }

    async def _login_from_roster(self, lookup: dict) -> Session | None:
        text = await self.client.fetch_text(self.settings.roster_csv_url)
        return find_inspector(parse_csv_rows(text), lookup)

    @staticmethod
    def _session_from_response(response: dict, lookup: dict) -> Session:
        user = response.get("user") or response.get("data") or {}
        if not isinstance(user, dict):
            user = {}
        return Session(
            rut=rut.clean(user.get("rut") or lookup.get("rut")),
            name=user.get("name") or user.get("nombre") or "Usuario",
            email=(user.get("email") or lookup.get("email") or "").strip().lower(),
            role=user.get("role") or user.get("rol") or "Inspector",
        )

    def clear_session(self) -> None:
        """Abandon the in-progress process. Identity and agenda are kept."""
        self.selected_unit = None
        self.process_type = None
        self.observations = []

    def logout(self) -> None:
        if self.session:
            logger.info("Inspector %s logged out", self.session.email or self.session.rut)
        self.clear_session()
        self.session = None
        self.units = []
        self.projects = []
        self.is_loading_data = False
        self.data_error = None
        self.connection_status = ConnectionStatus.IDLE

    async def dispose(self) -> None:
        self.logout()
        if self._owns_client:
            await self.client.aclose()

    # --- Agenda ---

    async def fetch_data(self) -> dict:
        """Replace units/projects with a fresh normalized snapshot."""
        if self.session is None:
            self.data_error = "No hay sesión activa"
            return {"ok": False, "error": self.data_error, "kind": "session"}

        self.is_loading_data = True
        self.data_error = None
        try:
            rows = await self._load_assignment_rows()
        except ApiError as e:
            self.data_error = e.message
            if e.kind != "logic":
                self.connection_status = ConnectionStatus.ERROR
            return _failure(e)
        finally:
            self.is_loading_data = False

        units, projects = normalize_rows(rows)
        self.units = units
        self.projects = projects
        self.connection_status = ConnectionStatus.CONNECTED
        logger.info("Loaded %d units in %d projects", len(units), len(projects))
        return {"ok": True, "units": len(units), "projects": len(projects)}

    async def _load_assignment_rows(self) -> list:
        if self.csv_mode:
            if not self.settings.units_csv_url:
                raise ConfigurationError("UNITS_CSV_URL no está configurada")
            text = await self.client.fetch_text(self.settings.units_csv_url)
            return parse_csv_rows(text)
        response = await self.client.call(
            self.settings.assignments_action,
            email=self.session.email,
            rut=self.session.rut,
        )
        return _extract_rows(response)

    def is_assigned_to_me(self, unit: Unit) -> bool:
        """Assignee key matches the session email (case-insensitive) or its RUT."""
        if self.session is None:
            return False
        row_id = unit.inspector_id.strip().lower()
        if not row_id:
            return False
        email = self.session.email.strip().lower()
        if email and row_id == email:
            return True
        my_rut = rut.clean(self.session.rut)
        return bool(my_rut) and "@" not in row_id and rut.clean(row_id) == my_rut

    @staticmethod
    def is_active(unit: Unit) -> bool:
        if unit.proceso_status == ProcessStatus.CANCELADA:
            return False
        return unit.active_state.strip().lower() not in INACTIVE_STATES

    def _my_active_units(self) -> list[tuple[Unit, date]]:
        result = []
        for unit in self.units:
            if not self.is_assigned_to_me(unit) or not self.is_active(unit):
                continue
            parsed = parse_date(unit.date, self.settings.date_formats)
            if parsed is None:
                continue
            result.append((unit, parsed))
        return result

    def get_scheduled_today(self) -> list[Unit]:
        today = self._today()
        todays = [u for u, d in self._my_active_units() if is_same_calendar_day(d, today)]
        return sorted(todays, key=lambda u: time_sort_key(u.time))

    def get_upcoming(self, window_days: int | None = None) -> list[Unit]:
        days = self.settings.upcoming_window_days if window_days is None else window_days
        today = self._today()
        upcoming = [(u, d) for u, d in self._my_active_units() if is_within_next_n_days(d, days, today)]
        upcoming.sort(key=lambda pair: (pair[1], time_sort_key(pair[0].time)))
        return [u for u, _ in upcoming]

    def get_projects_from_agenda(self) -> list[Project]:
        project_ids = {u.project_id for u in self.get_scheduled_today()}
        return [p for p in self.projects if p.id in project_ids]

    def find_unit(self, unit_id: str, unit_date: str | None = None) -> Unit | None:
        for unit in self.units:
            if unit.id == unit_id and (unit_date is None or unit.date == unit_date):
                return unit
        return None

    def project_for(self, unit: Unit) -> Project | None:
        return next((p for p in self.projects if p.id == unit.project_id), None)

    # --- Process selection ---

    def set_selected_unit(self, unit: Unit | None) -> None:
        if unit is None or self.selected_unit is None or unit.natural_key() != self.selected_unit.natural_key():
            self.observations = []
        self.selected_unit = unit

    def update_selected_unit(self, updates: dict) -> None:
        """Shallow merge onto the current selection. No-op when nothing is selected."""
        if self.selected_unit is None:
            return
        known = {k: v for k, v in updates.items() if k in Unit.model_fields}
        self.selected_unit = self.selected_unit.model_copy(update=known)

    def set_process_type(self, process_type: ProcessType | str | None) -> None:
        self.process_type = ProcessType(process_type) if process_type else None

    def validate_contact_fields(self) -> dict[str, str]:
        unit = self.selected_unit
        if unit is None:
            return {}
        return contact_errors(unit.owner_rut, unit.owner_email, unit.owner_phone)

    # --- Observations ---

    def add_observation(
        self,
        room_id: str,
        description: str,
        photo_url: str | None = None,
        status: ObservationStatus = ObservationStatus.OPEN,
    ) -> Observation:
        if not room_id or not (description or "").strip():
            raise ValidationError("La observación requiere recinto y descripción", field="description")
        observation = Observation(
            id=uuid.uuid4().hex[:9],
            unit_id=self.selected_unit.id if self.selected_unit else "",
            room_id=room_id,
            description=description.strip(),
            photo_url=photo_url,
            status=status,
        )
        self.observations.append(observation)
        return observation

    def remove_observation(self, observation_id: str) -> bool:
        before = len(self.observations)
        self.observations = [o for o in self.observations if o.id != observation_id]
        return len(self.observations) < before

    def update_observation_status(self, observation_id: str, status: ObservationStatus | str) -> bool:
        status = ObservationStatus(status)
        for i, obs in enumerate(self.observations):
            if obs.id == observation_id:
                self.observations[i] = obs.model_copy(update={"status": status})
                return True
        return False

    # --- Process transitions ---

    def _assignee_key(self, unit: Unit) -> str:
        if unit.inspector_id:
            return unit.inspector_id
        if self.session:
            return self.session.email or self.session.rut
        return ""

    def _patch_unit(self, unit: Unit, **changes) -> Unit:
        """Apply changes to the matching local unit: processId first, composite key as fallback."""
        patched = unit.model_copy(update=changes)
        for i, candidate in enumerate(self.units):
            if unit.process_id and candidate.process_id == unit.process_id:
                matched = True
            else:
                matched = candidate.natural_key() == unit.natural_key()
            if matched:
                patched = candidate.model_copy(update=changes)
                self.units[i] = patched
                break
        if self.selected_unit is not None and self.selected_unit.natural_key() == unit.natural_key():
            self.selected_unit = self.selected_unit.model_copy(update=changes)
            patched = self.selected_unit
        return patched

    def _unit_fields(self, unit: Unit) -> dict:
        project = self.project_for(unit)
        fields = {
            "email": self._assignee_key(unit),
            "edificio": project.name if project else "",
            "departamento": unit.number,
            "fecha": unit.date,
            "hora": unit.time,
            "tipo_proceso": unit.process_type_label,
            "deviceId": self.device_id,
        }
        if unit.process_id:
            fields["processId"] = unit.process_id
        return fields

    async def start_process(self, unit: Unit, process_type: ProcessType | str) -> dict:
        """PROGRAMADA -> EN_PROCESO once the backend returns a processId."""
        if unit.is_handover_generated:
            return _blocked("Esta unidad ya cuenta con acta generada.")
        if unit.proceso_status in (ProcessStatus.REALIZADO, ProcessStatus.CANCELADA):
            return _blocked(f"La unidad está en estado {unit.proceso_status.value}.")
        if self.session is None:
            return {"ok": False, "error": "No hay sesión activa", "kind": "session"}
        try:
            process_type = ProcessType(process_type)
        except ValueError:
            return _failure(ValidationError(f"Tipo de proceso inválido: {process_type}", field="process_type"))

        try:
            response = await self.client.call(
                self.settings.start_process_action,
                tipo=process_type.label,
                **self._unit_fields(unit),
            )
        except ApiError as e:
            logger.error("startProcess failed for unit %s: %s", unit.number, e.message)
            return _failure(e)

        process_id = _extract(response, "processId", "process_id", "id_proceso") or unit.process_id
        if process_id is not None:
            process_id = str(process_id)

        if self.selected_unit is None or self.selected_unit.natural_key() != unit.natural_key():
            self.observations = []
            self.selected_unit = unit
        patched = self._patch_unit(unit, proceso_status=ProcessStatus.EN_PROCESO, process_id=process_id)
        self.process_type = process_type
        logger.info("Process %s started for unit %s (%s)", process_id, unit.number, process_type.value)
        return {"ok": True, "processId": process_id, "unit": patched}

    def build_submission_payload(self, signatures: dict) -> dict:
        unit = self.selected_unit
        project = self.project_for(unit)
        payload = {
            **self._unit_fields(unit),
            "tipo": self.process_type.label,
            "proyecto": project.name if project else "Sin Proyecto",
            "depto": unit.number,
            "fecha_acta": self._today().isoformat(),
            "edificio_direccion": (project.address if project else "") or unit.project_address,
            "comuna": self.settings.default_comuna,
            "propietario": {
                "nombre": unit.owner_name,
                "rut": rut.format_rut(unit.owner_rut) if unit.owner_rut else "",
                "telefono": unit.owner_phone,
                "email": unit.owner_email,
            },
            "observaciones": [
                {
                    "nro": i + 1,
                    "recinto": room_name(o.room_id),
                    "detalle": o.description,
                    "estado": o.status.value,
                    "foto": o.photo_url or "",
                }
                for i, o in enumerate(self.observations)
            ],
            "firmas": {
                "cliente": signatures.get("cliente"),
                "representante": signatures.get("representante"),
            },
        }
        return payload

    async def submit_inspection(self, signatures: dict | None = None) -> dict:
        """EN_PROCESO -> REALIZADO. On success the agenda is refetched so status comes from the server."""
        unit = self.selected_unit
        if unit is None or self.process_type is None:
            return {"ok": False, "error": "Faltan datos de la unidad o proceso", "kind": "validation"}
        if unit.is_handover_generated or unit.proceso_status in (ProcessStatus.REALIZADO, ProcessStatus.CANCELADA):
            return _blocked("Esta unidad ya no admite un nuevo acta.")

        signatures = signatures or {}
        if not signatures.get("cliente") or not signatures.get("representante"):
            return _failure(ValidationError("Ambas firmas son obligatorias para generar el acta.", field="firmas"))

        field_errors = self.validate_contact_fields()
        if field_errors:
            first = next(iter(field_errors))
            return _failure(ValidationError(field_errors[first], field=first), fields=field_errors)

        payload = self.build_submission_payload(signatures)
        try:
            response = await self.client.call(self.settings.complete_process_action, **payload)
        except ApiError as e:
            logger.error("completeProcess failed for unit %s: %s", unit.number, e.message)
            return _failure(e)

        logger.info("Acta submitted for unit %s with %d observations", unit.number, len(self.observations))
        refreshed = await self.fetch_data()
        return {
            "ok": True,
            "pdf_url": _extract(response, "pdf_url", "pdfUrl", "url", "acta_url"),
            "processId": unit.process_id,
            "refreshed": refreshed["ok"],
        }

    async def get_acta_status(self, unit: Unit | None = None) -> dict:
        unit = unit or self.selected_unit
        if unit is None:
            return {"ok": False, "error": "No hay unidad seleccionada", "kind": "validation"}
        try:
            response = await self.client.call(self.settings.acta_status_action, **self._unit_fields(unit))
        except ApiError as e:
            return _failure(e)

        # acta fields live in `data`; the envelope's own status is not an acta flag
        acta = response.get("data") if isinstance(response.get("data"), dict) else response
        url = _extract(acta, "pdf_url", "url", "acta_url")
        status = _extract(acta, "acta_status", "generated")
        generated = parse_handover_flag(str(status) if status is not None else "", url or "")
        changes = {"is_handover_generated": generated}
        if url:
            changes["handover_url"] = url
        self._patch_unit(unit, **changes)
        return {"ok": True, "generated": generated, "url": url}

    # --- Connection ---

    async def check_connection(self) -> ConnectionStatus:
        """Ping the backend. Never raises: the result is in connection_status."""
        self.connection_status = ConnectionStatus.CHECKING
        try:
            if self.csv_mode:
                await self.client.fetch_text(self.settings.roster_csv_url, retries=0)
            else:
                await self.client.call(self.settings.health_action, retries=0)
        except (ApiError, ConfigurationError) as e:
            logger.warning("Health check failed: %s", e.message)
            self.connection_status = ConnectionStatus.ERROR
        else:
            self.connection_status = ConnectionStatus.CONNECTED
        return self.connection_status


def create_store(settings: Settings | None = None, client: ApiClient | None = None, **kwargs) -> InspectionStore:
    return InspectionStore(settings=settings, client=client, **kwargs)
