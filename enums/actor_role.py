from enum import Enum


class ActorRole(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SYSTEM = "system"   # Payment gateway callbacks and background jobs
