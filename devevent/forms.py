"""Typed parsing of multipart event submissions.

A submission is a mix of single text fields, repeated ``tags`` / ``agenda``
entries and at most one ``image`` file. Anything else is refused before the
handler does any work.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Type, Union

from pydantic import ValidationError as PydanticValidationError
from starlette.datastructures import FormData, UploadFile

from devevent.errors import ValidationError
from devevent.schemas import EventCreateForm, EventUpdateForm

IMAGE_FIELD = "image"
LIST_FIELDS = frozenset({"tags", "agenda"})
TEXT_FIELDS = frozenset(EventUpdateForm.model_fields) - LIST_FIELDS


@dataclass
class ParsedEventForm:
    fields: Union[EventCreateForm, EventUpdateForm]
    image: Optional[UploadFile] = None


def _describe(exc: PydanticValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if not isinstance(p, int))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


def parse_event_form(form: FormData, *, partial: bool) -> ParsedEventForm:
    """Map a multipart payload onto the create (``partial=False``) or update schema."""

    data: dict[str, object] = {}
    image: Optional[UploadFile] = None

    for key in dict.fromkeys(form.keys()):
        values = form.getlist(key)

        if key == IMAGE_FIELD:
            if values == [""]:
                # browsers send an empty string for a file input left blank
                continue
            if len(values) != 1 or isinstance(values[0], str):
                raise ValidationError("Exactly one image file is allowed.")
            image = values[0]
            continue

        if key in LIST_FIELDS:
            if any(not isinstance(v, str) for v in values):
                raise ValidationError(f"Field '{key}' must contain text.")
            data[key] = list(values)
            continue

        if key not in TEXT_FIELDS:
            raise ValidationError(f"Unknown field '{key}'.")
        if len(values) != 1:
            raise ValidationError(f"Field '{key}' must be sent once.")
        if not isinstance(values[0], str):
            raise ValidationError(f"Field '{key}' must be text.")
        data[key] = values[0]

    schema: Type[EventUpdateForm] = EventUpdateForm if partial else EventCreateForm
    try:
        fields = schema.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError("Event form is invalid.", error=_describe(exc)) from exc
    return ParsedEventForm(fields=fields, image=image)


async def read_image(upload: Optional[UploadFile], *, max_bytes: int) -> Optional[bytes]:
    """Return the uploaded bytes, or None for a missing or empty file."""

    if upload is None:
        return None
    data = await upload.read(max_bytes + 1)
    await upload.close()
    if not data:
        return None
    if len(data) > max_bytes:
        raise ValidationError(
            "Image file is too large.", error=f"Maximum size is {max_bytes} bytes."
        )
    return data
