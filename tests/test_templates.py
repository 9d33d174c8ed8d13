"""Tests for VCL template rendering."""

import pytest

from models import PodInfo, ValidationError
from templates import (
    merge_rendered,
    render_templates,
    split_files,
    template_context,
    verify_entrypoint,
)


class TestSplitFiles:
    """Tests for split_files function."""

    def test_split(self):
        files, templates = split_files(
            {"entrypoint.vcl": "a", "backends.vcl.tmpl": "b", "notes.txt": "c"}
        )

        assert files == {"entrypoint.vcl": "a", "notes.txt": "c"}
        assert templates == {"backends.vcl.tmpl": "b"}

    def test_none(self):
        assert split_files(None) == ({}, {})


class TestVerifyEntrypoint:
    """Tests for verify_entrypoint function."""

    def test_static_entrypoint(self):
        verify_entrypoint({"entrypoint.vcl": ""}, {}, "entrypoint.vcl")

    def test_templated_entrypoint(self):
        verify_entrypoint({}, {"entrypoint.vcl.tmpl": ""}, "entrypoint.vcl")

    def test_missing(self):
        with pytest.raises(ValidationError, match="entrypoint.vcl must exist"):
            verify_entrypoint({"other.vcl": ""}, {}, "entrypoint.vcl")


class TestRenderTemplates:
    """Tests for render_templates function."""

    def test_context(self):
        context = template_context(
            [PodInfo(ip="10.0.0.1", node_labels={"zone": "a"}, pod_name="web-1")],
            8080,
            [PodInfo(ip="10.0.1.1")],
            6081,
        )
        template = (
            "{% for b in backends %}{{ b.ip }}:{{ target_port }} {{ b.node_labels.zone }}"
            "{% endfor %}|{% for n in varnish_nodes %}{{ n.ip }}:{{ varnish_port }}{% endfor %}"
        )

        rendered = render_templates({"backends.vcl.tmpl": template}, context)

        assert rendered == {"backends.vcl": "10.0.0.1:8080 a|10.0.1.1:6081"}

    def test_undefined_variable(self):
        with pytest.raises(ValidationError, match="backends.vcl.tmpl"):
            render_templates({"backends.vcl.tmpl": "{{ missing }}"}, {})

    def test_syntax_error(self):
        with pytest.raises(ValidationError):
            render_templates({"backends.vcl.tmpl": "{% for %}"}, {})


class TestMergeRendered:
    """Tests for merge_rendered function."""

    def test_merge(self):
        merged = merge_rendered({"entrypoint.vcl": "a"}, {"backends.vcl": "b"})

        assert merged == {"entrypoint.vcl": "a", "backends.vcl": "b"}

    def test_collision(self):
        with pytest.raises(ValidationError, match="same name"):
            merge_rendered({"backends.vcl": "a"}, {"backends.vcl": "b"})
