import asyncio

import httpx
import pytest

from conftest import TODAY, assignment_row
from inmobapp.errors import ConfigurationError, ValidationError
from inmobapp.models.inspection import ConnectionStatus, ObservationStatus, ProcessStatus, ProcessType, Session, Unit
from inmobapp.modules.store import InspectionStore
from inmobapp.modules.unit_normalizer import normalize_rows

SIGNATURES = {"cliente": "data:image/png;base64,AAA", "representante": "data:image/png;base64,BBB"}


def _login(store, credential="11111111-1"):
    return asyncio.run(store.login(credential))


def _store_with_units(store, *rows, email="a@x.com", rut_value=""):
    store.session = Session(email=email, rut=rut_value)
    store.units, store.projects = normalize_rows(list(rows))
    return store


# --- Login ---

def test_login_populates_session_and_agenda(store, backend):
    result = _login(store)

    assert result["ok"]
    assert result["assignments_loaded"]
    assert store.session.name == "Ana Inspectora"
    assert store.session.email == "inspector@inmob.cl"
    assert store.session.rut == "111111111"
    assert len(store.units) == 1
    assert backend.actions() == ["login", "getAssignments"]
    assert backend.calls[0]["rut"] == "111111111"


def test_login_by_email(store, backend):
    result = _login(store, "Inspector@Inmob.cl")
    assert result["ok"]
    assert backend.calls[0]["email"] == "inspector@inmob.cl"


def test_invalid_rut_rejected_without_network(store, backend):
    result = _login(store, "12345678-9")
    assert result == {"ok": False, "error": "RUT inválido", "kind": "validation", "field": "credential"}
    assert backend.calls == []
    assert store.session is None


def test_login_rejection_message_is_verbatim(store, backend):
    backend.inspectors = []
    result = _login(store)
    assert not result["ok"]
    assert result["kind"] == "logic"
    assert result["error"] == "RUT no encontrado en la base de inspectores"
    assert store.session is None
    assert store.units == []


def test_assignment_failure_keeps_login(store, backend):
    backend.queue("getAssignments", *[httpx.Response(503, text="Service Unavailable") for _ in range(3)])
    result = _login(store)

    assert result["ok"]
    assert not result["assignments_loaded"]
    assert result["assignments_error"] == "Service Unavailable"
    assert store.session is not None
    assert store.units == []
    assert store.data_error == "Service Unavailable"
    assert store.connection_status == ConnectionStatus.ERROR
    assert not store.is_loading_data


def test_login_without_configuration_raises(settings, api_client):
    settings.webapp_url = ""
    store = InspectionStore(settings, api_client, device_id="dev-test")
    with pytest.raises(ConfigurationError):
        _login(store)


def test_csv_login_without_units_export_sets_no_session(settings, api_client, backend):
    settings.webapp_url = ""
    settings.roster_csv_url = "https://docs.test/roster"
    settings.units_csv_url = ""
    store = InspectionStore(settings, api_client, device_id="dev-test")

    with pytest.raises(ConfigurationError):
        _login(store)

    assert store.session is None
    assert backend.calls == []


# --- fetch_data ---

def test_fetch_requires_session(store, backend):
    result = asyncio.run(store.fetch_data())
    assert result["kind"] == "session"
    assert backend.calls == []


def test_fetch_is_idempotent(store, backend):
    backend.rows.append(assignment_row(departamento="102", edificio="Edificio B"))
    _login(store)
    first_units, first_projects = list(store.units), list(store.projects)

    asyncio.run(store.fetch_data())

    assert store.units == first_units
    assert store.projects == first_projects
    assert len(store.units) == 2


def test_fetch_replaces_collection(store, backend):
    _login(store)
    backend.rows = [assignment_row(departamento="305")]
    asyncio.run(store.fetch_data())
    assert [u.number for u in store.units] == ["305"]


def test_fetch_recovers_after_transient_failures(store, backend):
    _login(store)
    backend.queue(
        "getAssignments",
        httpx.ConnectError("reset", request=httpx.Request("POST", "https://script.test")),
        httpx.ConnectError("reset", request=httpx.Request("POST", "https://script.test")),
    )
    result = asyncio.run(store.fetch_data())
    assert result["ok"]
    assert store.data_error is None
    assert store.connection_status == ConnectionStatus.CONNECTED


# --- Agenda views ---

def test_scheduled_today_matches_assignee_email(store):
    _store_with_units(store, assignment_row(id_inspector="A@X.com", fecha="2024-03-15"))
    assert len(store.get_scheduled_today()) == 1

    store.session = Session(email="b@x.com")
    assert store.get_scheduled_today() == []


def test_scheduled_today_matches_assignee_rut(store):
    _store_with_units(store, assignment_row(id_inspector="11.111.111-1"), email="", rut_value="111111111")
    assert len(store.get_scheduled_today()) == 1


def test_inactive_units_are_hidden(store):
    _store_with_units(store, assignment_row(id_inspector="a@x.com", estado="inactivo"))
    assert store.get_scheduled_today() == []
    assert store.get_upcoming() == []


def test_cancelled_units_are_hidden(store):
    _store_with_units(store, assignment_row(id_inspector="a@x.com", estado_proceso="CANCELADA"))
    assert store.get_scheduled_today() == []


def test_invalid_date_never_listed(store):
    _store_with_units(store, assignment_row(id_inspector="a@x.com", fecha="not-a-date"))
    assert store.get_scheduled_today() == []
    assert store.get_upcoming() == []


def test_scheduled_today_sorted_by_time_missing_last(store):
    _store_with_units(
        store,
        assignment_row(id_inspector="a@x.com", departamento="1", hora=""),
        assignment_row(id_inspector="a@x.com", departamento="2", hora="15:30"),
        assignment_row(id_inspector="a@x.com", departamento="3", hora="9:00"),
        assignment_row(id_inspector="a@x.com", departamento="4", fecha="16/03/2024"),
    )
    assert [u.number for u in store.get_scheduled_today()] == ["3", "2", "1"]


def test_upcoming_window_boundaries(store):
    _store_with_units(
        store,
        assignment_row(id_inspector="a@x.com", departamento="edge", fecha="29/03/2024"),
        assignment_row(id_inspector="a@x.com", departamento="out", fecha="30/03/2024"),
        assignment_row(id_inspector="a@x.com", departamento="past", fecha="14/03/2024"),
        assignment_row(id_inspector="a@x.com", departamento="today", fecha="15/03/2024", hora="18:00"),
        assignment_row(id_inspector="a@x.com", departamento="early", fecha="15/03/2024", hora="08:00"),
    )
    assert [u.number for u in store.get_upcoming(14)] == ["early", "today", "edge"]
    assert [u.number for u in store.get_upcoming(3)] == ["early", "today"]


def test_views_reflect_mutations_without_caching(store):
    _store_with_units(store, assignment_row(id_inspector="a@x.com"))
    assert len(store.get_scheduled_today()) == 1
    store.units = []
    assert store.get_scheduled_today() == []


def test_projects_from_agenda(store):
    _store_with_units(
        store,
        assignment_row(id_inspector="a@x.com", edificio="Edificio A"),
        assignment_row(id_inspector="a@x.com", edificio="Edificio B", fecha="20/03/2024"),
    )
    assert [p.id for p in store.get_projects_from_agenda()] == ["edificio-a"]


# --- Local mutations ---

def test_update_selected_unit_is_noop_without_selection(store):
    store.update_selected_unit({"owner_phone": "+56912345678"})
    assert store.selected_unit is None


def test_update_selected_unit_merges(store):
    _store_with_units(store, assignment_row())
    store.set_selected_unit(store.units[0])
    store.update_selected_unit({"owner_phone": "+56912345678", "unknown": "x"})
    assert store.selected_unit.owner_phone == "+56912345678"
    assert store.selected_unit.owner_name == "Juan Pérez"
    assert store.units[0].owner_phone == ""


def test_observations_lifecycle(store):
    _store_with_units(store, assignment_row())
    store.set_selected_unit(store.units[0])
    first = store.add_observation("r2", "Mancha en cielo")
    second = store.add_observation("r7", "Silicona despegada")

    assert first.id != second.id
    assert first.unit_id == store.units[0].id
    assert store.update_observation_status(first.id, "REPAIRING")
    assert store.observations[0].status == ObservationStatus.REPAIRING
    assert store.remove_observation(second.id)
    assert not store.remove_observation("missing")
    assert len(store.observations) == 1

    with pytest.raises(ValidationError):
        store.add_observation("r2", "   ")

    store.clear_session()
    assert store.observations == []
    assert store.selected_unit is None
    assert store.session is not None


def test_logout_resets_everything(store):
    _login(store)
    store.set_selected_unit(store.units[0])
    store.add_observation("r1", "Puerta roza")
    store.logout()

    assert store.session is None
    assert store.units == []
    assert store.projects == []
    assert store.observations == []
    assert store.connection_status == ConnectionStatus.IDLE


# --- Process transitions ---

def test_start_process_blocked_when_acta_exists(store, backend):
    _login(store)
    backend.calls.clear()
    unit = store.units[0].model_copy(update={"is_handover_generated": True})

    result = asyncio.run(store.start_process(unit, ProcessType.PRE_ENTREGA))

    assert result["ok"] is False
    assert result["kind"] == "blocked"
    assert backend.calls == []


def test_start_process_patches_after_acknowledgment(store, backend):
    _login(store)
    unit = store.units[0]

    result = asyncio.run(store.start_process(unit, "PRE_ENTREGA"))

    assert result["ok"]
    assert result["processId"] == "P-0001"
    assert store.units[0].proceso_status == ProcessStatus.EN_PROCESO
    assert store.units[0].process_id == "P-0001"
    assert store.selected_unit.process_id == "P-0001"
    assert store.process_type == ProcessType.PRE_ENTREGA

    sent = backend.calls[-1]
    assert sent["action"] == "startProcess"
    assert sent["email"] == "inspector@inmob.cl"
    assert sent["departamento"] == "101"
    assert sent["fecha"] == "15/03/2024"
    assert sent["hora"] == "10:00"
    assert sent["deviceId"] == "dev-test"
    assert sent["tipo"] == "PRE ENTREGA"


def test_start_process_failure_leaves_state_untouched(store, backend):
    _login(store)
    backend.queue("startProcess", *[httpx.Response(200, json={"ok": False, "error": "Unidad tomada por otro dispositivo"}) for _ in range(3)])
    unit = store.units[0]

    result = asyncio.run(store.start_process(unit, ProcessType.ENTREGA_FINAL))

    assert result == {"ok": False, "error": "Unidad tomada por otro dispositivo", "kind": "logic"}
    assert store.units[0].proceso_status == ProcessStatus.PROGRAMADA
    assert store.selected_unit is None
    assert store.process_type is None


def test_start_process_timeout_is_reported(store, backend):
    _login(store)
    backend.queue("startProcess", httpx.ReadTimeout("slow", request=httpx.Request("POST", "https://script.test")))
    result = asyncio.run(store.start_process(store.units[0], ProcessType.PRE_ENTREGA))
    assert result["kind"] == "timeout"
    assert backend.actions().count("startProcess") == 1


def test_submit_without_selection_makes_no_call(store, backend):
    _login(store)
    backend.calls.clear()
    result = asyncio.run(store.submit_inspection(SIGNATURES))
    assert result["ok"] is False
    assert backend.calls == []


def test_submit_requires_both_signatures(store, backend):
    _login(store)
    asyncio.run(store.start_process(store.units[0], ProcessType.PRE_ENTREGA))
    result = asyncio.run(store.submit_inspection({"cliente": "data:image/png;base64,AAA", "representante": ""}))
    assert result["kind"] == "validation"
    assert "completeProcess" not in backend.actions()


def test_submit_rejects_malformed_owner_rut(store, backend):
    _login(store)
    asyncio.run(store.start_process(store.units[0], ProcessType.PRE_ENTREGA))
    store.update_selected_unit({"owner_rut": "12345678-9"})

    result = asyncio.run(store.submit_inspection(SIGNATURES))

    assert result["kind"] == "validation"
    assert result["fields"] == {"owner_rut": "RUT inválido"}
    assert "completeProcess" not in backend.actions()


def test_submit_failure_keeps_selection_for_retry(store, backend):
    _login(store)
    asyncio.run(store.start_process(store.units[0], ProcessType.PRE_ENTREGA))
    store.add_observation("r2", "Mancha en cielo")
    backend.queue("completeProcess", *[httpx.Response(500, text="Internal error") for _ in range(3)])

    result = asyncio.run(store.submit_inspection(SIGNATURES))

    assert result["ok"] is False
    assert result["kind"] == "server"
    assert result["status_code"] == 500
    assert store.selected_unit is not None
    assert len(store.observations) == 1
    assert store.units[0].proceso_status == ProcessStatus.EN_PROCESO


def test_end_to_end_handover(store, backend):
    result = _login(store, "11111111-1")
    assert result["ok"]

    today = store.get_scheduled_today()
    assert len(today) == 1
    assert today[0].project_id == "edificio-a"
    assert today[0].number == "101"

    started = asyncio.run(store.start_process(today[0], ProcessType.PRE_ENTREGA))
    assert started["ok"]
    assert started["processId"]
    assert store.units[0].proceso_status == ProcessStatus.EN_PROCESO

    store.update_selected_unit({"owner_rut": "12.345.678-5", "owner_phone": "+56 9 1234 5678", "owner_email": "juan@cliente.cl"})
    store.add_observation("r2", "Mancha en cielo")
    store.add_observation("r7", "Silicona despegada")

    submitted = asyncio.run(store.submit_inspection(SIGNATURES))
    assert submitted["ok"]
    assert submitted["pdf_url"] == "https://drive.test/acta-101.pdf"
    assert submitted["refreshed"]

    payload = backend.completed[0]
    assert payload["processId"] == started["processId"]
    assert payload["proyecto"] == "Edificio A"
    assert payload["depto"] == "101"
    assert payload["fecha_acta"] == TODAY.isoformat()
    assert payload["propietario"]["rut"] == "12.345.678-5"
    assert [o["recinto"] for o in payload["observaciones"]] == ["Cocina", "Baño 1"]
    assert payload["firmas"] == SIGNATURES

    asyncio.run(store.fetch_data())
    assert store.units[0].proceso_status == ProcessStatus.REALIZADO
    assert store.units[0].is_handover_generated

    blocked = asyncio.run(store.start_process(store.units[0], ProcessType.ENTREGA_FINAL))
    assert blocked["kind"] == "blocked"


def test_acta_status_patches_unit(store, backend):
    _login(store)
    backend.rows[0]["acta_status"] = "GENERADA"
    backend.rows[0]["acta_url"] = "https://drive.test/acta-101.pdf"

    result = asyncio.run(store.get_acta_status(store.units[0]))

    assert result == {"ok": True, "generated": True, "url": "https://drive.test/acta-101.pdf"}
    assert store.units[0].is_handover_generated
    assert store.units[0].handover_url == "https://drive.test/acta-101.pdf"


def test_acta_status_ignores_envelope_status(store, backend):
    _login(store)
    backend.queue("getActaStatus", httpx.Response(200, json={"ok": True, "status": "ok", "data": {"acta_status": ""}}))

    result = asyncio.run(store.get_acta_status(store.units[0]))

    assert result == {"ok": True, "generated": False, "url": None}
    assert not store.units[0].is_handover_generated

    started = asyncio.run(store.start_process(store.units[0], ProcessType.PRE_ENTREGA))
    assert started["ok"]


# --- Connection ---

def test_check_connection_states(store, backend):
    assert store.connection_status == ConnectionStatus.IDLE
    assert asyncio.run(store.check_connection()) == ConnectionStatus.CONNECTED

    backend.queue("health", httpx.ConnectError("down", request=httpx.Request("POST", "https://script.test")))
    assert asyncio.run(store.check_connection()) == ConnectionStatus.ERROR


def test_check_connection_never_raises_on_missing_config(settings, api_client):
    settings.webapp_url = ""
    store = InspectionStore(settings, api_client, device_id="dev-test")
    assert asyncio.run(store.check_connection()) == ConnectionStatus.ERROR


def test_natural_key_ignores_whitespace():
    a = Unit(id="x", project_id="p", number="101 ", date="15/03/2024", time="10:00")
    b = Unit(id="y", project_id="p", number="101", date="15/03/2024", time=" 10:00")
    assert a.natural_key() == b.natural_key()
