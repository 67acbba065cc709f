from __future__ import annotations


class ConnectionFault(OSError):
    """A write to a session's socket failed (peer reset, broken pipe, closed)."""


class RegistryError(ValueError):
    """A registry request was refused; ``str()`` is the reason shown to the user."""


class InvalidName(RegistryError):
    pass


class NameTaken(RegistryError):
    def __init__(self, name: str) -> None:
        super().__init__("Display name is already in use. Please choose another.")
        self.name = name


class InvalidRoomName(RegistryError):
    pass


class AlreadyMember(RegistryError):
    def __init__(self, room: str) -> None:
        super().__init__(f"You are already in room {room}.")
        self.room = room


class RoomNotFound(RegistryError):
    def __init__(self, room: str) -> None:
        super().__init__(f"Room {room} does not exist.")
        self.room = room


class NotMember(RegistryError):
    def __init__(self, room: str) -> None:
        super().__init__(f"You are not in room {room}.")
        self.room = room
