"""Command line synthesis for the varnishd container."""

import re

from constants import VARNISH_ADMIN_ADDRESS, VARNISH_SECRET_FILE, VCL_CONFIG_DIR

# A token is a flag when it starts with "-" followed by a word character.
ARG_KEY_PATTERN = re.compile(r"-\w")

MEBIBYTE = 2**20
STORAGE_FRACTION = 0.9


def is_arg_key(token: str) -> bool:
    return ARG_KEY_PATTERN.match(token) is not None


def parse_args(raw_args: list[str]) -> list[list[str]]:
    """Split a flat token list into ``[key]`` or ``[key, value]`` entries.

    Parsing is greedy: every entry starts with whatever token comes next, and
    the following token is taken as its value unless it looks like a flag.
    """
    parsed: list[list[str]] = []
    i = 0
    while i < len(raw_args):
        entry = [raw_args[i]]
        i += 1
        if i < len(raw_args) and not is_arg_key(raw_args[i]):
            entry.append(raw_args[i])
            i += 1
        parsed.append(entry)
    return parsed


def default_args(memory_limit_bytes: int | None) -> dict[str, list[str]]:
    """Return the default argument groups keyed by flag.

    Storage is sized to 90% of the container memory limit; with no limit
    varnishd keeps its own storage default.
    """
    defaults = {
        "-p": ["-p", "default_ttl=3600", "-p", "default_grace=3600"],
        "-T": ["-T", VARNISH_ADMIN_ADDRESS],
    }
    if memory_limit_bytes:
        storage_mib = int(memory_limit_bytes * STORAGE_FRACTION / MEBIBYTE)
        defaults["-s"] = ["-s", f"malloc,{storage_mib}M"]
    return defaults


def override_args(service_port: int, default_vcl_file: str) -> list[str]:
    """Arguments the operator always appends, whatever the user asked for."""
    return [
        "-F",
        "-a", f"0.0.0.0:{service_port}",
        "-S", VARNISH_SECRET_FILE,
        "-f", f"{VCL_CONFIG_DIR}/{default_vcl_file}",
    ]


def synthesize_args(
    user_args: list[str] | None,
    memory_limit_bytes: int | None,
    service_port: int,
    default_vcl_file: str,
) -> list[str]:
    """Build the full varnishd argument list.

    The user's entries and the defaults the user did not override are sorted
    together by flag (stable, so equal flags keep their order), then the
    override block follows. A user entry that exactly repeats an override
    entry is dropped, so feeding the output back in yields the same list. A
    user entry that reuses an override flag with a different value is kept
    and the override still follows it.
    """
    overrides = override_args(service_port, default_vcl_file)
    override_entries = parse_args(overrides)
    defaults = default_args(memory_limit_bytes)

    parsed: list[list[str]] = []
    for entry in parse_args(list(user_args or [])):
        defaults.pop(entry[0], None)
        if entry in override_entries:
            continue
        parsed.append(entry)

    for key in sorted(defaults):
        parsed.extend(parse_args(defaults[key]))
    parsed.sort(key=lambda entry: entry[0])

    out: list[str] = []
    for entry in parsed:
        out.extend(entry)
    out.extend(overrides)
    return out
