from pydantic import BaseModel, ConfigDict

from enums.actor_role import ActorRole


class ActorDTO(BaseModel):
    """Who triggers a transition. user_id is required for USER actors."""
    model_config = ConfigDict(frozen=True)

    role: ActorRole
    user_id: str | None = None

    @classmethod
    def user(cls, user_id: str) -> "ActorDTO":
        return cls(role=ActorRole.USER, user_id=user_id)

    @classmethod
    def admin(cls, admin_id: str | None = None) -> "ActorDTO":
        return cls(role=ActorRole.ADMIN, user_id=admin_id)

    @classmethod
    def system(cls) -> "ActorDTO":
        return cls(role=ActorRole.SYSTEM)
