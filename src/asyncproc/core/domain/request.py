from pydantic import BaseModel, ConfigDict, Field, field_validator


class LaunchRequest(BaseModel):
    """Что запускать. Команда непрозрачна: её разбирает shell, а не мы"""

    model_config = ConfigDict(frozen=True)

    command: str = Field(..., min_length=1, description="Shell command line")
    timeout: float | None = Field(default=None, gt=0, description="Deadline in seconds")

    @field_validator("command")
    @classmethod
    def validate_command(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Command cannot be empty")
        return v


class ChildHandle(BaseModel):
    """Форкнутый процесс. После setsid он лидер своей сессии, поэтому pgid == pid"""

    model_config = ConfigDict(frozen=True)

    pid: int = Field(..., gt=0, description="Child process id")

    @property
    def pgid(self) -> int:
        return self.pid
