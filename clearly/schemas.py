"""Boundary decoding for worker callbacks.

A callback is exactly one of two shapes, selected by ``status``; anything
else is rejected before it reaches the reconciler.
"""
from dataclasses import dataclass
from typing import Annotated, Any, Dict, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from clearly.errors import InvalidCallback


@dataclass(frozen=True)
class Success:
    note_content: Any
    note_type: str = 'general'


@dataclass(frozen=True)
class Failure:
    message: str


class SuccessCallback(BaseModel):
    model_config = ConfigDict(extra='forbid', populate_by_name=True)

    file_id: int = Field(alias='fileId', gt=0)
    status: Literal['success']
    notes: Union[Dict[str, Any], str]
    note_type: str = Field(default='general', alias='noteType', min_length=1, max_length=50)

    @field_validator('notes')
    @classmethod
    def notes_not_empty(cls, value):
        if isinstance(value, str) and not value.strip():
            raise ValueError('notes must not be empty')
        if isinstance(value, dict) and not value:
            raise ValueError('notes must not be empty')
        return value

    def outcome(self):
        return Success(note_content=self.notes, note_type=self.note_type)


class ErrorCallback(BaseModel):
    model_config = ConfigDict(extra='forbid', populate_by_name=True)

    file_id: int = Field(alias='fileId', gt=0)
    status: Literal['error']
    error: str = Field(default='Note generation failed', min_length=1, max_length=2000)

    def outcome(self):
        return Failure(message=self.error)


CallbackPayload = Annotated[Union[SuccessCallback, ErrorCallback], Field(discriminator='status')]

_callback_adapter = TypeAdapter(CallbackPayload)


def decode_callback(body):
    """Validate a webhook body. Returns ``(file_id, outcome)``."""
    if not isinstance(body, dict):
        raise InvalidCallback('Callback body must be a JSON object')
    try:
        payload = _callback_adapter.validate_python(body)
    except ValidationError as e:
        errors = [
            {'field': '.'.join(str(part) for part in err['loc']), 'message': err['msg']}
            for err in e.errors()
        ]
        raise InvalidCallback('Callback does not match the success or error shape', errors=errors)
    return payload.file_id, payload.outcome()


def parse_inline_result(body, default_note_type='general'):
    """Some workers answer the submission itself with finished notes.

    Returns a :class:`Success` when the response carries a result, else None.
    """
    if not isinstance(body, dict):
        return None
    if body.get('status') == 'success' and body.get('notes'):
        return Success(note_content=body['notes'], note_type=body.get('noteType') or default_note_type)
    if body.get('soap_note_text') or body.get('patient_summary_text'):
        return Success(
            note_content={
                'soapNote': body.get('soap_note_text') or '',
                'patientSummary': body.get('patient_summary_text') or '',
            },
            note_type='both',
        )
    return None
