"""Structural validation of request parameters and response payloads.

Contracts are pydantic types. Input contracts subclass ``InputContract`` and
reject unknown fields; output contracts subclass ``OutputContract`` and keep
unknown fields, since the remote services add undocumented fields over time.
Any type expression pydantic understands (``list[Model]``, ``datetime``,
``Model | None``) is a valid output contract.

Both validators report every failing field, never just the first.
"""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError

from wsdottie.errors import ContractViolation, FieldIssue

if TYPE_CHECKING:
    from collections.abc import Mapping


class InputContract(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class OutputContract(BaseModel):
    model_config = ConfigDict(extra="allow")


@lru_cache(maxsize=512)
def _adapter(contract: Any) -> TypeAdapter[Any]:
    return TypeAdapter(contract)


def _issues(exc: ValidationError) -> list[FieldIssue]:
    return [
        FieldIssue(path=".".join(str(part) for part in error["loc"]), reason=error["msg"])
        for error in exc.errors()
    ]


def accepts_empty(contract: type[BaseModel] | None) -> bool:
    """True if the contract can be satisfied by an empty parameter set."""
    if contract is None:
        return True
    return not any(field.is_required() for field in contract.model_fields.values())


def validate_input(
    contract: type[BaseModel] | None,
    params: Mapping[str, Any],
) -> Mapping[str, Any]:
    """Check ``params`` against ``contract`` and return them unchanged."""
    if contract is None:
        if params:
            raise ContractViolation(
                [FieldIssue(path=key, reason="Extra inputs are not permitted") for key in params]
            )
        return params
    try:
        contract.model_validate(dict(params))
    except ValidationError as exc:
        raise ContractViolation(_issues(exc)) from exc
    return params


def validate_output(contract: Any, data: Any) -> Any:
    """Validate ``data`` against ``contract`` and return the typed value."""
    if contract is None:
        return data
    try:
        return _adapter(contract).validate_python(data)
    except ValidationError as exc:
        raise ContractViolation(_issues(exc)) from exc


def dump_output(contract: Any, value: Any) -> str:
    """Serialise a validated value to JSON for the cache."""
    return _adapter(Any if contract is None else contract).dump_json(value).decode("utf-8")


def load_output(contract: Any, payload: str) -> Any:
    """Rebuild a validated value from ``dump_output`` JSON."""
    try:
        return _adapter(Any if contract is None else contract).validate_json(payload)
    except ValidationError as exc:
        raise ContractViolation(_issues(exc)) from exc
