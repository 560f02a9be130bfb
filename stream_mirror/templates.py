"""DASH SegmentTemplate identifier substitution."""

import re
from typing import Optional

from .errors import TemplateError

_IDENTIFIER_RE = re.compile(r"\$(\w*?)(?:%0(\d+)d)?\$")

_NUMERIC = ("Number", "Time", "Bandwidth")


def expand_template(template: str, representation_id: Optional[str] = None,
                    number: Optional[int] = None, time: Optional[int] = None,
                    bandwidth: Optional[int] = None) -> str:
    """
    Substitute ``$RepresentationID$``, ``$Number$``, ``$Time$`` and
    ``$Bandwidth$`` (the numeric ones optionally as ``$Name%0Nd$``) and turn
    ``$$`` into ``$``. Pure: no I/O, no URL resolution.
    """
    values = {
        "RepresentationID": representation_id,
        "Number": number,
        "Time": time,
        "Bandwidth": bandwidth,
    }

    def substitute(m: "re.Match[str]") -> str:
        name, width = m.group(1), m.group(2)
        if name == "":
            if width:
                raise TemplateError(f"format tag on escaped dollar in {template!r}")
            return "$"
        if name not in values:
            raise TemplateError(f"unknown identifier ${name}$ in {template!r}")
        value = values[name]
        if value is None:
            raise TemplateError(f"no value for ${name}$ in {template!r}")
        if width:
            if name not in _NUMERIC:
                raise TemplateError(f"format tag on ${name}$ in {template!r}")
            return f"{int(value):0{int(width)}d}"
        return str(value)

    return _IDENTIFIER_RE.sub(substitute, template)


def uses_identifier(template: str, name: str) -> bool:
    return any(m.group(1) == name for m in _IDENTIFIER_RE.finditer(template))
