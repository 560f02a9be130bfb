import pytest

from stream_mirror.errors import TemplateError
from stream_mirror.templates import expand_template, uses_identifier


def test_number():
    assert expand_template("chunk-$Number$.m4s", number=3) == "chunk-3.m4s"


def test_representation_id_and_padded_number():
    assert expand_template("$RepresentationID$/$Number%05d$.m4s", "v1", number=42) == "v1/00042.m4s"


def test_time_and_bandwidth():
    assert expand_template("$Bandwidth$/t$Time$.m4s", time=180000, bandwidth=500000) == "500000/t180000.m4s"


def test_escaped_dollar():
    assert expand_template("a$$b-$Number$", number=1) == "a$b-1"


def test_template_without_identifiers_is_unchanged():
    assert expand_template("init.mp4") == "init.mp4"


@pytest.mark.parametrize("template, kwargs", [
    ("$Foo$.m4s", {}),
    ("$Number$.m4s", {}),
    ("$RepresentationID%03d$.m4s", {"representation_id": "v1"}),
    ("$%03d$", {}),
])
def test_bad_templates_raise(template, kwargs):
    with pytest.raises(TemplateError):
        expand_template(template, **kwargs)


def test_uses_identifier():
    assert uses_identifier("seg-$Number%05d$.m4s", "Number")
    assert not uses_identifier("seg-$Number%05d$.m4s", "Time")
    assert not uses_identifier("a$$b", "Number")
