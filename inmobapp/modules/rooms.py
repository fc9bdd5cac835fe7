"""
Standard room list walked during an inspection. Static: not loaded from the backend.
"""

from inmobapp.models.inspection import Room

STANDARD_ROOMS: tuple[Room, ...] = (
    Room(id="r1", name="Acceso"),
    Room(id="r2", name="Cocina"),
    Room(id="r3", name="Estar Comedor"),
    Room(id="r4", name="Pasillo"),
    Room(id="r5", name="Dormitorio 1"),
    Room(id="r6", name="Dormitorio 2"),
    Room(id="r7", name="Baño 1"),
    Room(id="r8", name="Baño 2"),
    Room(id="r9", name="Terraza"),
    Room(id="r10", name="Bodega"),
    Room(id="r11", name="Estacionamiento"),
)

ROOM_NAMES = {room.id: room.name for room in STANDARD_ROOMS}


def room_name(room_id: str) -> str:
    return ROOM_NAMES.get(room_id, "Desconocido")
