"""
Roster Loader: reads the published spreadsheet exports (CSV) used as a
fallback data source when the web app URL is not configured.
The inspectors sheet is matched by email or RUT; the units sheet goes
through the same normalizer as the JSON assignments.
"""

import csv
import io
import logging

from inmobapp.models.inspection import Session
from inmobapp.modules import rut

logger = logging.getLogger(__name__)


def parse_csv_rows(text: str | bytes) -> list[dict]:
    """Parse CSV text into row dicts. Blank lines and '##' comment lines are skipped."""
    if isinstance(text, bytes):
        text = text.decode("utf-8-sig")
    text = text.lstrip("\ufeff").strip()

    lines = []
    for line in text.splitlines():
        if line.strip() and not line.strip().startswith("##"):
            lines.append(line)

    if len(lines) < 2:
        return []

    reader = csv.DictReader(io.StringIO("\n".join(lines)))
    rows = []
    for row in reader:
        rows.append({(k or "").strip(): (v or "").strip() for k, v in row.items() if k is not None})
    return rows


def _find_key(keys: list[str], *needles: str, default: str) -> str:
    for key in keys:
        lowered = key.lower()
        if any(n in lowered for n in needles):
            return key
    return default


def find_inspector(rows: list[dict], credential: dict) -> Session | None:
    """Match a normalized credential ({"email": ...} or {"rut": ...}) against roster rows."""
    email = (credential.get("email") or "").lower()
    wanted_rut = rut.clean(credential.get("rut"))

    for row in rows:
        keys = list(row.keys())
        email_key = _find_key(keys, "email", "correo", default="Email")
        rut_key = _find_key(keys, "rut", "id", default="RUT / ID")
        name_key = _find_key(keys, "nombre", "completo", default="Nombre Completo")
        role_key = _find_key(keys, "rol", default="Rol")

        row_email = (row.get(email_key) or "").strip().lower()
        row_rut = rut.clean(row.get(rut_key))

        if (email and row_email == email) or (wanted_rut and row_rut == wanted_rut):
            return Session(
                rut=row_rut or wanted_rut,
                name=row.get(name_key) or "Usuario",
                email=row_email,
                role=row.get(role_key) or "Inspector",
            )

    logger.info("No roster match for %s", email or wanted_rut)
    return None
