from pydantic import BaseModel, field_validator


class RuntimeConfigOut(BaseModel):
    generation_enabled: bool
    cost_overrides: dict[str, int]
    disabled_providers: list[str]


class RuntimeConfigUpdate(BaseModel):
    generation_enabled: bool | None = None
    cost_overrides: dict[str, int] | None = None
    disabled_providers: list[str] | None = None

    @field_validator("cost_overrides")
    @classmethod
    def validate_costs(cls, v: dict[str, int] | None) -> dict[str, int] | None:
        if v is None:
            return v
        for kind, cost in v.items():
            if cost <= 0:
                raise ValueError(f"cost for {kind} must be positive")
        return v
