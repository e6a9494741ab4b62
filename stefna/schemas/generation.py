from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GenerationSubmitIn(CamelModel):
    prompt: str = Field(min_length=1)
    media_kind: str = Field(min_length=1)
    run_id: str = Field(min_length=1, max_length=128)
    user_id: str | None = None  # falls back to the gateway user header
    source_url: str | None = None
    negative_prompt: str | None = None
    seed: int | None = None


class GenerationSubmitOut(CamelModel):
    job_id: str
    run_id: str
    media_kind: str
    status: str
    output_url: str | None = None
    attempt: int = 1


class GenerationStatusOut(CamelModel):
    status: str
    output_url: str | None = None
    error: str | None = None
    job_id: str | None = None
    run_id: str | None = None
    media_kind: str | None = None
    provider: str | None = None


class BalanceOut(CamelModel):
    user_id: str
    balance: int


class ErrorOut(CamelModel):
    error: str
    message: str
    detail: dict | None = None
