from pydantic import BaseModel, ConfigDict, Field, model_validator


class ErrorInfo(BaseModel):
    """Описание исключения, пережившее передачу между процессами"""

    model_config = ConfigDict(frozen=True)

    type: str = Field(..., min_length=1, description="Exception class name")
    message: str = Field(default="", description="Exception message")

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ErrorInfo":
        return cls(type=type(exc).__name__, message=str(exc))


class ResultPayload(BaseModel):
    """
    Сообщение ребёнок -> родитель.

    Либо команда запускалась (output_lines + exit_code), либо случилась ошибка (error).
    Одновременно оба варианта невозможны, это проверяет валидатор.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    success: bool = Field(..., description="Command was actually executed")
    output_lines: list[str] | None = Field(default=None, description="Captured stdout lines")
    exit_code: int | None = Field(default=None, description="Command exit code")
    error: ErrorInfo | None = Field(default=None, description="Failure before/during execution")

    @model_validator(mode="after")
    def validate_exclusive(self):
        if self.success:
            if self.output_lines is None or self.exit_code is None:
                raise ValueError("successful payload must carry output_lines and exit_code")
            if self.error is not None:
                raise ValueError("successful payload must not carry an error")
        else:
            if self.error is None:
                raise ValueError("failed payload must carry an error")
            if self.output_lines is not None or self.exit_code is not None:
                raise ValueError("failed payload must not carry output_lines or exit_code")
        return self

    @classmethod
    def completed(cls, exit_code: int, output_lines: list[str]) -> "ResultPayload":
        return cls(success=True, exit_code=exit_code, output_lines=list(output_lines))

    @classmethod
    def failed(cls, exc: BaseException) -> "ResultPayload":
        return cls(success=False, error=ErrorInfo.from_exception(exc))

    @property
    def output(self) -> str:
        return "\n".join(self.output_lines or [])

    def encode(self) -> bytes:
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def decode(cls, data: bytes) -> "ResultPayload":
        return cls.model_validate_json(data)
