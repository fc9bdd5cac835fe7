"""
Unit Normalizer: turns assignment rows (JSON objects or CSV dicts) into Unit/Project models.

The sheet behind the backend has been renamed several times without a
migration, so every canonical field accepts a set of column aliases.
Schema churn stays in COLUMN_ALIASES; the rest of the code only sees canonical names.
"""

import logging
import re
import unicodedata

from inmobapp.models.inspection import ProcessStatus, Project, Unit, UnitStatus

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_NAME = "Sin Edificio"

COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "unit_id": ("id", "id_unidad", "unit_id", "row_id"),
    "project_name": ("edificio", "proyecto", "project", "building", "nombre_proyecto"),
    "project_address": ("direccion", "direccion_edificio", "address", "edificio_direccion"),
    "number": ("departamento", "depto", "unidad", "unit", "numero", "nro_depto"),
    "owner_name": ("cliente", "propietario", "nombre_cliente", "owner"),
    "owner_rut": ("rut_cliente", "rut_propietario", "owner_rut"),
    "owner_phone": ("telefono", "telefono_cliente", "fono", "celular"),
    "owner_email": ("email_cliente", "correo_cliente", "owner_email"),
    "inspector_id": ("id_inspector", "inspector", "email_inspector", "rut_inspector", "asignado", "assignee"),
    "process_type_label": ("tipo_proceso", "tipo", "proceso", "process_type"),
    "active_state": ("estado", "activo", "active", "estado_agenda"),
    "date": ("fecha", "fecha_entrega", "fecha_programada", "date"),
    "time": ("hora", "hora_entrega", "time"),
    "proceso_status": ("proceso_status", "estado_proceso", "status_proceso", "process_status"),
    "acta_status": ("acta_status", "acta_generada", "estado_acta", "acta"),
    "handover_url": ("acta_url", "url_acta", "pdf_url", "link_acta"),
    "handover_date": ("fecha_acta", "acta_fecha"),
    "process_id": ("process_id", "processid", "id_proceso"),
    "parking": ("estacionamiento", "parking"),
    "storage": ("bodega", "storage"),
}

PROCESS_STATUS_MAP = {
    "programada": ProcessStatus.PROGRAMADA,
    "programado": ProcessStatus.PROGRAMADA,
    "pendiente": ProcessStatus.PROGRAMADA,
    "scheduled": ProcessStatus.PROGRAMADA,
    "en_proceso": ProcessStatus.EN_PROCESO,
    "en proceso": ProcessStatus.EN_PROCESO,
    "in_progress": ProcessStatus.EN_PROCESO,
    "realizado": ProcessStatus.REALIZADO,
    "realizada": ProcessStatus.REALIZADO,
    "completado": ProcessStatus.REALIZADO,
    "completed": ProcessStatus.REALIZADO,
    "cancelada": ProcessStatus.CANCELADA,
    "cancelado": ProcessStatus.CANCELADA,
    "cancelled": ProcessStatus.CANCELADA,
}

HANDOVER_FLAGS = {"si", "sí", "true", "1", "generada", "generado", "generated", "listo", "lista"}


def normalize_key(key) -> str:
    """'Dirección Edificio ' -> 'direccion_edificio'."""
    text = unicodedata.normalize("NFKD", str(key)).encode("ascii", "ignore").decode("ascii")
    text = re.sub(r"[^a-z0-9]+", "_", text.strip().lower())
    return text.strip("_")


_ALIAS_LOOKUP = {
    normalize_key(alias): canonical
    for canonical, aliases in COLUMN_ALIASES.items()
    for alias in aliases
}


def canonicalize_row(row: dict) -> dict:
    """Map a raw row onto canonical field names. First non-empty alias wins."""
    resolved = {}
    for key, value in row.items():
        canonical = _ALIAS_LOOKUP.get(normalize_key(key))
        if canonical is None:
            continue
        text = _text(value)
        if canonical not in resolved or (not resolved[canonical] and text):
            resolved[canonical] = text
    return resolved


def resolve_field(row: dict, canonical: str) -> str:
    return canonicalize_row(row).get(canonical, "")


def slugify(name: str) -> str:
    return re.sub(r"\s+", "-", name.strip().lower())


def derive_unit_status(label: str) -> UnitStatus:
    """Substring heuristic over the free-text process label."""
    upper = (label or "").upper()
    if "PRE" in upper:
        return UnitStatus.PRE_ENTREGA
    if "ENTREGA" in upper:
        return UnitStatus.ENTREGADO
    return UnitStatus.PENDING


def parse_process_status(value: str) -> ProcessStatus:
    raw = (value or "").strip().lower()
    if raw in PROCESS_STATUS_MAP:
        return PROCESS_STATUS_MAP[raw]
    return PROCESS_STATUS_MAP.get(raw.replace(" ", "_"), ProcessStatus.PROGRAMADA)


def parse_handover_flag(value: str, url: str = "") -> bool:
    if (value or "").strip().lower() in HANDOVER_FLAGS:
        return True
    return bool(url)


def normalize_row(row: dict) -> tuple[Unit, Project]:
    fields = canonicalize_row(row)

    project_name = fields.get("project_name") or DEFAULT_PROJECT_NAME
    project_id = slugify(project_name)
    address = fields.get("project_address", "")
    project = Project(id=project_id, name=project_name, address=address)

    number = fields.get("number", "")
    handover_url = fields.get("handover_url") or None

    unit = Unit(
        id=fields.get("unit_id") or f"unit-{project_id}-{number}",
        project_id=project_id,
        number=number,
        owner_name=fields.get("owner_name", ""),
        owner_rut=fields.get("owner_rut", ""),
        owner_phone=fields.get("owner_phone", ""),
        owner_email=fields.get("owner_email", ""),
        status=derive_unit_status(fields.get("process_type_label", "")),
        inspector_id=fields.get("inspector_id", ""),
        process_type_label=fields.get("process_type_label", ""),
        parking=fields.get("parking", ""),
        storage=fields.get("storage", ""),
        project_address=address,
        active_state=fields.get("active_state", ""),
        date=fields.get("date", ""),
        time=fields.get("time", ""),
        proceso_status=parse_process_status(fields.get("proceso_status", "")),
        is_handover_generated=parse_handover_flag(fields.get("acta_status", ""), handover_url or ""),
        handover_url=handover_url,
        handover_date=fields.get("handover_date") or None,
        process_id=fields.get("process_id") or None,
    )
    return unit, project


def normalize_rows(rows) -> tuple[list[Unit], list[Project]]:
    """Normalize a full assignment snapshot. Malformed rows are skipped, never raised."""
    units: list[Unit] = []
    projects: dict[str, Project] = {}

    for i, row in enumerate(rows or []):
        if not isinstance(row, dict):
            logger.warning("Skipping row %d: expected an object, got %s", i, type(row).__name__)
            continue
        unit, project = normalize_row(row)
        projects.setdefault(project.id, project)
        units.append(unit)

    return units, list(projects.values())


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()
