import json
from datetime import date

import httpx
import pytest

from inmobapp.config import Settings
from inmobapp.modules.api_client import ApiClient
from inmobapp.modules.store import InspectionStore

TODAY = date(2024, 3, 15)
WEBAPP_URL = "https://script.test/macros/s/demo/exec"


def assignment_row(**overrides) -> dict:
    row = {
        "id_inspector": "inspector@inmob.cl",
        "tipo_proceso": "PRE ENTREGA",
        "edificio": "Edificio A",
        "direccion": "Av. Providencia 1234",
        "departamento": "101",
        "cliente": "Juan Pérez",
        "estado": "activo",
        "fecha": "15/03/2024",
        "hora": "10:00",
    }
    row.update(overrides)
    return row


class FakeBackend:
    """In-memory stand-in for the Apps Script web app."""

    def __init__(self):
        self.calls: list[dict] = []
        self.inspectors = [
            {"rut": "11111111-1", "email": "inspector@inmob.cl", "name": "Ana Inspectora", "role": "Inspector"},
        ]
        self.rows: list[dict] = [assignment_row()]
        self.queued: dict[str, list] = {}
        self.completed: list[dict] = []
        self._next_process = 1

    def queue(self, action: str, *outcomes) -> None:
        """Outcomes returned before the normal handler: httpx.Response or an exception to raise."""
        self.queued.setdefault(action, []).extend(outcomes)

    def actions(self) -> list[str]:
        return [c["action"] for c in self.calls]

    def _find_row(self, body: dict) -> dict | None:
        for row in self.rows:
            if body.get("processId") and row.get("process_id") == body["processId"]:
                return row
        for row in self.rows:
            if (
                str(row.get("departamento")) == str(body.get("departamento"))
                and row.get("fecha") == body.get("fecha")
                and row.get("hora") == body.get("hora")
            ):
                return row
        return None

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content.decode("utf-8"))
        action = body["action"]
        self.calls.append(body)

        queued = self.queued.get(action)
        if queued:
            outcome = queued.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        if action == "login":
            for user in self.inspectors:
                rut = user["rut"].replace("-", "").upper()
                if body.get("rut") == rut or body.get("email") == user["email"]:
                    return httpx.Response(200, json={"ok": True, "user": user})
            return httpx.Response(200, json={"ok": False, "error": "RUT no encontrado en la base de inspectores"})

        if action == "getAssignments":
            return httpx.Response(200, json={"ok": True, "data": [dict(r) for r in self.rows]})

        if action == "startProcess":
            row = self._find_row(body)
            if row is None:
                return httpx.Response(200, json={"ok": False, "error": "No se encontró programación para estos criterios"})
            process_id = f"P-{self._next_process:04d}"
            self._next_process += 1
            row["estado_proceso"] = "EN_PROCESO"
            row["process_id"] = process_id
            return httpx.Response(200, json={"ok": True, "processId": process_id})

        if action == "completeProcess":
            row = self._find_row(body)
            if row is None:
                return httpx.Response(200, json={"ok": False, "error": "Proceso no encontrado"})
            url = f"https://drive.test/acta-{row['departamento']}.pdf"
            row["estado_proceso"] = "REALIZADO"
            row["acta_status"] = "GENERADA"
            row["acta_url"] = url
            self.completed.append(body)
            return httpx.Response(200, json={"ok": True, "pdf_url": url})

        if action == "getActaStatus":
            row = self._find_row(body) or {}
            return httpx.Response(200, json={
                "ok": True,
                "data": {"acta_status": row.get("acta_status", ""), "url": row.get("acta_url", "")},
            })

        if action == "health":
            return httpx.Response(200, json={"ok": True, "status": "up"})

        return httpx.Response(200, json={"ok": False, "error": f"Acción desconocida: {action}"})


@pytest.fixture()
def settings(tmp_path):
    return Settings(
        webapp_url=WEBAPP_URL,
        api_key="test-key",
        retry_backoff=0,
        device_id_path=str(tmp_path / "device"),
    )


@pytest.fixture()
def backend():
    return FakeBackend()


@pytest.fixture()
def api_client(settings, backend):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(backend.handler))
    return ApiClient(settings, http_client=http_client)


@pytest.fixture()
def store(settings, api_client):
    return InspectionStore(settings, api_client, device_id="dev-test", today=lambda: TODAY)
