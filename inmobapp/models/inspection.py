from enum import Enum

from pydantic import BaseModel


class UnitStatus(str, Enum):
    PENDING = "PENDING"
    PRE_ENTREGA = "PRE_ENTREGA"
    ENTREGADO = "ENTREGADO"


class ProcessStatus(str, Enum):
    PROGRAMADA = "PROGRAMADA"
    EN_PROCESO = "EN_PROCESO"
    REALIZADO = "REALIZADO"
    CANCELADA = "CANCELADA"


class ProcessType(str, Enum):
    PRE_ENTREGA = "PRE_ENTREGA"
    ENTREGA_FINAL = "ENTREGA_FINAL"

    @property
    def label(self) -> str:
        return "PRE ENTREGA" if self is ProcessType.PRE_ENTREGA else "ENTREGA FINAL"


class ObservationStatus(str, Enum):
    OPEN = "OPEN"
    REPAIRING = "REPAIRING"
    CLOSED = "CLOSED"


class ConnectionStatus(str, Enum):
    IDLE = "IDLE"
    CHECKING = "CHECKING"
    CONNECTED = "CONNECTED"
    ERROR = "ERROR"


class Project(BaseModel):
    id: str
    name: str
    address: str = ""
    status: str = "ACTIVE"  # ACTIVE, COMPLETED


class Unit(BaseModel):
    id: str
    project_id: str
    number: str = ""
    owner_name: str = ""
    owner_rut: str = ""
    owner_phone: str = ""  # filled in during process selection
    owner_email: str = ""
    status: UnitStatus = UnitStatus.PENDING

    inspector_id: str = ""  # assignee key: email or RUT
    process_type_label: str = ""
    parking: str = ""
    storage: str = ""
    project_address: str = ""
    active_state: str = ""
    date: str = ""
    time: str = ""

    proceso_status: ProcessStatus = ProcessStatus.PROGRAMADA
    is_handover_generated: bool = False
    handover_url: str | None = None
    handover_date: str | None = None
    process_id: str | None = None

    def natural_key(self) -> tuple[str, str, str, str]:
        """Composite identity the backend uses in absence of a stable row id."""
        return (self.project_id, self.number.strip(), self.date.strip(), self.time.strip())


class Room(BaseModel):
    id: str
    name: str


class Observation(BaseModel):
    id: str
    unit_id: str
    room_id: str
    description: str
    photo_url: str | None = None
    status: ObservationStatus = ObservationStatus.OPEN


class Session(BaseModel):
    rut: str = ""
    name: str = "Usuario"
    email: str = ""
    role: str = "Inspector"
