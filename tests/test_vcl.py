"""Tests for VCL configuration management through the varnish admin scripts."""

import subprocess

import pytest

from models import (
    ResourceNotFoundError,
    VCLCompilationError,
    VCLError,
    VCLReloadError,
)
from vcl import (
    create_vcl_config_name,
    extract_config_map_version,
    get_active_vcl_config,
    list_vcl_configs,
    parse_vcl_list,
    reload_vcl,
)

VCL_LIST_OUTPUT = """\
available   auto/cold          0 boot
available   auto/warm          0 v-100-1700000000
active      auto/warm          0 v-101-1700000100
available  label/warm          0 prod -> v-101-1700000100
"""


def make_runner(returncode=0, stdout="", exc=None):
    """Fake subprocess.run recording the commands it was given."""

    def runner(args, **kwargs):
        runner.calls.append(args)
        if exc is not None:
            raise exc
        return subprocess.CompletedProcess(args, returncode, stdout=stdout)

    runner.calls = []
    return runner


class TestParseVclList:
    """Tests for parse_vcl_list function."""

    def test_plain_and_label_entries(self):
        configs = parse_vcl_list(VCL_LIST_OUTPUT)

        assert [c.name for c in configs] == [
            "boot",
            "v-100-1700000000",
            "v-101-1700000100",
            "prod",
        ]
        assert configs[0].temperature == "cold"
        assert configs[2].is_active
        assert configs[3].label is True
        assert configs[3].referenced_vcl == "v-101-1700000100"

    def test_skips_blank_and_unknown_lines(self):
        configs = parse_vcl_list("\nsomething odd\nactive auto/warm 0 boot\n")

        assert [c.name for c in configs] == ["boot"]


class TestListVclConfigs:
    """Tests for list_vcl_configs and get_active_vcl_config."""

    def test_runs_list_script(self):
        runner = make_runner(stdout=VCL_LIST_OUTPUT)

        list_vcl_configs(runner)

        assert runner.calls == [["vcl_list"]]

    def test_failure(self):
        with pytest.raises(VCLError, match="exited with status 1"):
            list_vcl_configs(make_runner(returncode=1, stdout="Could not connect"))

    def test_active(self):
        active = get_active_vcl_config(make_runner(stdout=VCL_LIST_OUTPUT))

        assert active.name == "v-101-1700000100"

    def test_nothing_active(self):
        runner = make_runner(stdout="available auto/warm 0 boot\n")

        with pytest.raises(ResourceNotFoundError):
            get_active_vcl_config(runner)


class TestConfigNames:
    """Tests for generated configuration names."""

    def test_create(self):
        assert create_vcl_config_name("12345", now=1700000000.5) == "v-12345-1700000000"

    def test_skips_loaded_names(self):
        loaded = {"boot", "v-12345-1700000000", "v-12345-1700000001"}

        name = create_vcl_config_name("12345", now=1700000000.2, loaded=loaded)

        assert name == "v-12345-1700000002"
        assert extract_config_map_version(name) == "12345"

    def test_round_trip(self):
        assert extract_config_map_version(create_vcl_config_name("12345")) == "12345"

    @pytest.mark.parametrize("name", ["boot", "v-12345", "x-1-2", "v-1-abc", "v-1-2-3"])
    def test_foreign_names(self, name):
        assert extract_config_map_version(name) == ""


class TestReloadVcl:
    """Tests for reload_vcl function."""

    def test_success(self):
        runner = make_runner(stdout="VCL 'v-1-2' compiled\n")

        reload_vcl("v-1-2", runner)

        assert runner.calls == [["vcl_reload", "v-1-2"]]

    def test_compilation_failure(self):
        output = "Message from VCC-compiler:\nUnused backend be_0\nVCL compilation failed\n"

        with pytest.raises(VCLCompilationError) as excinfo:
            reload_vcl("v-1-2", make_runner(returncode=1, stdout=output))

        assert excinfo.value.output == output

    def test_other_failure(self):
        with pytest.raises(VCLReloadError) as excinfo:
            reload_vcl("v-1-2", make_runner(returncode=2, stdout="Connection refused"))

        assert not isinstance(excinfo.value, VCLCompilationError)
        assert excinfo.value.output == "Connection refused"

    def test_timeout(self):
        runner = make_runner(exc=subprocess.TimeoutExpired(["vcl_reload"], 60))

        with pytest.raises(VCLReloadError, match="timed out"):
            reload_vcl("v-1-2", runner)

    def test_missing_script(self):
        with pytest.raises(VCLReloadError, match="could not run"):
            reload_vcl("v-1-2", make_runner(exc=FileNotFoundError("vcl_reload")))
