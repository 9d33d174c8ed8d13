"""VCL configurations loaded in the running varnishd.

varnishd is driven through two scripts shipped in the controller image:
``vcl_list`` prints ``vcl.list`` output and ``vcl_reload <name>`` loads the
files in the VCL directory under a new configuration name and activates it.
"""

import logging
import subprocess
import time
from collections.abc import Callable, Collection
from typing import Any

from models import (
    ResourceNotFoundError,
    VCLCompilationError,
    VCLConfig,
    VCLError,
    VCLReloadError,
    VCLStatus,
)

logger = logging.getLogger(__name__)

VCL_LIST_COMMAND = "vcl_list"
VCL_RELOAD_COMMAND = "vcl_reload"

# Printed by varnishd on its own line when the VCL does not compile.
COMPILATION_FAILED_MARKER = "VCL compilation failed"

# varnishd rejects configuration names starting with a digit.
VCL_VERSION_PREFIX = "v"

Runner = Callable[..., subprocess.CompletedProcess]


def parse_vcl_list(output: str) -> list[VCLConfig]:
    """Parse ``vcl.list`` output.

    Plain configurations have four columns::

        active   warm/warm   0  v-123-1700000000

    Labels and labeled configurations have six; for a label the last column
    is the configuration it points at::

        available  label/warm  0  prod  ->  v-123-1700000000
    """
    configs: list[VCLConfig] = []
    for line in output.splitlines():
        columns = line.split()
        if not columns:
            continue
        if len(columns) == 4:
            temperature = columns[1].split("/")[-1]
            configs.append(
                VCLConfig(name=columns[3], status=columns[0], temperature=temperature)
            )
        elif len(columns) == 6:
            state, _, temperature = columns[1].partition("/")
            is_label = state == "label"
            configs.append(
                VCLConfig(
                    name=columns[3],
                    status=columns[0],
                    temperature=temperature,
                    label=is_label,
                    referenced_vcl=columns[5] if is_label else None,
                )
            )
        else:
            logger.warning("Unknown VCL config format: %r", line)
    return configs


def _run(runner: Runner, args: list[str], timeout: float) -> subprocess.CompletedProcess:
    return runner(
        args,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        timeout=timeout,
        check=False,
    )


def list_vcl_configs(
    runner: Runner = subprocess.run, timeout: float = 30
) -> list[VCLConfig]:
    """Return the configurations currently loaded in varnishd."""
    try:
        result = _run(runner, [VCL_LIST_COMMAND], timeout)
    except (OSError, subprocess.TimeoutExpired) as e:
        raise VCLError(f"{VCL_LIST_COMMAND} failed: {e}") from e
    if result.returncode != 0:
        raise VCLError(
            f"{VCL_LIST_COMMAND} exited with status {result.returncode}", result.stdout or ""
        )
    return parse_vcl_list(result.stdout or "")


def get_active_vcl_config(
    runner: Runner = subprocess.run, timeout: float = 30
) -> VCLConfig:
    """Return the active configuration.

    Right after varnishd starts nothing may be active yet; that is reported
    as ResourceNotFoundError so the caller retries.
    """
    return find_active_vcl_config(list_vcl_configs(runner, timeout))


def find_active_vcl_config(configs: list[VCLConfig]) -> VCLConfig:
    active = [config for config in configs if config.status == VCLStatus.ACTIVE.value]
    if not active:
        raise ResourceNotFoundError("No active VCL configuration found")
    return active[-1]


def create_vcl_config_name(
    revision: str, now: float | None = None, loaded: Collection[str] = ()
) -> str:
    """Name a new configuration after its source revision: ``v-<rev>-<unix ts>``.

    varnishd refuses to load a name twice, so when a reload for the same
    revision already happened within this second the timestamp is moved
    forward past every name in ``loaded``.
    """
    timestamp = int(time.time() if now is None else now)
    while f"{VCL_VERSION_PREFIX}-{revision}-{timestamp}" in loaded:
        timestamp += 1
    return f"{VCL_VERSION_PREFIX}-{revision}-{timestamp}"


def extract_config_map_version(name: str) -> str:
    """Return the source revision encoded in a generated configuration name.

    Names that were not generated by create_vcl_config_name give "".
    """
    parts = name.split("-")
    if len(parts) != 3 or parts[0] != VCL_VERSION_PREFIX or not parts[2].isdigit():
        return ""
    return parts[1]


def is_compilation_failure(output: str) -> bool:
    return any(line.strip() == COMPILATION_FAILED_MARKER for line in output.splitlines())


def reload_vcl(
    name: str, runner: Runner = subprocess.run, timeout: float = 60
) -> str:
    """Load and activate the VCL directory as configuration ``name``.

    Returns the script output. A failure whose output carries the
    compilation marker raises VCLCompilationError; any other failure,
    including a timeout, raises VCLReloadError.
    """
    try:
        result = _run(runner, [VCL_RELOAD_COMMAND, name], timeout)
    except subprocess.TimeoutExpired as e:
        raise VCLReloadError(f"{VCL_RELOAD_COMMAND} {name} timed out after {timeout}s") from e
    except OSError as e:
        raise VCLReloadError(f"{VCL_RELOAD_COMMAND} {name} could not run: {e}") from e

    output = result.stdout or ""
    if result.returncode == 0:
        logger.info("Loaded VCL configuration %s", name)
        return output

    if is_compilation_failure(output):
        raise VCLCompilationError(f"VCL compilation failed for {name}", output)
    raise VCLReloadError(
        f"{VCL_RELOAD_COMMAND} {name} exited with status {result.returncode}", output
    )


def describe(config: VCLConfig) -> dict[str, Any]:
    """Log-friendly view of a configuration."""
    return {
        "name": config.name,
        "status": config.status,
        "temperature": config.temperature,
        "label": config.label,
        "referenced_vcl": config.referenced_vcl,
        "revision": extract_config_map_version(config.name),
    }
