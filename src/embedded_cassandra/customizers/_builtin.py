# pyright: reportAny=false, reportExplicitAny=false
"""Built-in customizers for Cassandra distributions."""

from __future__ import annotations

import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from embedded_cassandra.config import PortName, set_nested_key
from embedded_cassandra.version import Version

from ._base import Customizer, CustomizerContext, always

if TYPE_CHECKING:
    from collections.abc import Callable

MARKER = "# embedded-cassandra: "
BLOCK_BEGIN = "# BEGIN embedded-cassandra"
BLOCK_END = "# END embedded-cassandra"

CONFIG_FILE = Path("conf/cassandra.yaml")
ENV_SCRIPT_POSIX = Path("conf/cassandra-env.sh")
ENV_SCRIPT_WINDOWS = Path("conf/cassandra-env.ps1")
JVM_OPTIONS = Path("conf/jvm.options")
JVM_SERVER_OPTIONS = Path("conf/jvm-server.options")

SEED_PROVIDER_CLASS = "org.apache.cassandra.locator.SimpleSeedProvider"

_V4 = Version.of(4, 0)

_JMX_ASSIGNMENT = re.compile(r'^(\s*\$?JMX_PORT\s*=\s*)(["\']?)[0-9]+\2(.*)$', re.MULTILINE)


def _split_lines(content: str) -> list[str]:
    return content.splitlines(keepends=True)


def _line_ending(content: str) -> str:
    return "\r\n" if "\r\n" in content else "\n"


def _is_comment(line: str) -> bool:
    return line.lstrip().startswith("#")


def env_script(context: CustomizerContext) -> Path:
    """Return the environment script of the context's platform."""
    return ENV_SCRIPT_WINDOWS if context.platform.is_windows else ENV_SCRIPT_POSIX


def jvm_options_file(context: CustomizerContext) -> Path:
    """Return the JVM options file of the context's version."""
    return JVM_SERVER_OPTIONS if context.version.is_at_least(_V4) else JVM_OPTIONS


def _before_v4(context: CustomizerContext) -> bool:
    return not context.version.is_at_least(_V4)


def _has_jvm_options_file(context: CustomizerContext) -> bool:
    # 2.x distributions ship no options file; their JVM options go through the environment
    return (context.root / jvm_options_file(context)).is_file()


def _before_v4_with_jvm_options_file(context: CustomizerContext) -> bool:
    return _before_v4(context) and _has_jvm_options_file(context)


# =============================================================================
# Line toggler
# =============================================================================


def toggle_lines(content: str, pattern: re.Pattern[str], *, enable: bool) -> str:
    """Comment out or restore lines matching ``pattern``.

    Disabling prefixes each matching, uncommented line with the marker.
    Enabling removes the marker from marked lines whose remainder matches.
    Lines are never removed, so toggling twice is a no-op.
    """
    lines = _split_lines(content)
    result: list[str] = []
    for line in lines:
        if enable:
            if line.startswith(MARKER) and pattern.search(line[len(MARKER) :]):
                line = line[len(MARKER) :]  # noqa: PLW2901
        elif not line.startswith(MARKER) and not _is_comment(line) and pattern.search(line):
            line = MARKER + line  # noqa: PLW2901
        result.append(line)
    return "".join(result)


def line_toggler(
    name: str,
    target: Callable[[CustomizerContext], Path | str],
    pattern: str | re.Pattern[str],
    *,
    enable: bool = False,
    applies: Callable[[CustomizerContext], bool] = always,
) -> Customizer:
    """Build a customizer that disables (or re-enables) matching lines.

    Args:
        name: Customizer name.
        target: Maps the context to the file to edit.
        pattern: Regular expression searched in each line.
        enable: Restore previously disabled lines instead of disabling.
        applies: Predicate deciding whether the customizer runs.

    Returns:
        The customizer.
    """
    compiled = re.compile(pattern) if isinstance(pattern, str) else pattern

    def transform(content: str, _context: CustomizerContext) -> str:
        return toggle_lines(content, compiled, enable=enable)

    return Customizer(name=name, target=target, transform=transform, applies=applies)


# =============================================================================
# JVM options
# =============================================================================


_SIZED_OPTION = re.compile(r"^(-X(?:mx|ms|mn|ss))")


def jvm_option_key(option: str) -> str:
    """Return the part of a JVM option that identifies what it sets.

    Examples:
        >>> jvm_option_key("-Xmx512m")
        '-Xmx'
        >>> jvm_option_key("-XX:+UseG1GC")
        '-XX:UseG1GC'
        >>> jvm_option_key("-Dcassandra.ring_delay_ms=100")
        '-Dcassandra.ring_delay_ms'
    """
    option = option.strip()
    if option.startswith("-XX:"):
        name = option[4:].lstrip("+-")
        return "-XX:" + name.split("=", 1)[0]
    sized = _SIZED_OPTION.match(option)
    if sized:
        return sized.group(1)
    if option.startswith("-X") and ":" in option:
        return option.split(":", 1)[0]
    return option.split("=", 1)[0]


def rewrite_jvm_options(content: str, options: tuple[str, ...] | list[str]) -> str:
    """Replace the managed block of a JVM options file.

    Distribution lines setting the same option as one of ``options`` are
    dropped, any earlier managed block is removed, and ``options`` are
    appended between the block markers.
    """
    newline = _line_ending(content)
    overridden = {jvm_option_key(option) for option in options}
    kept: list[str] = []
    in_block = False

    for line in _split_lines(content):
        stripped = line.strip()
        if stripped == BLOCK_BEGIN:
            in_block = True
            continue
        if in_block:
            if stripped == BLOCK_END:
                in_block = False
            continue
        if stripped and not _is_comment(line) and jvm_option_key(stripped) in overridden:
            continue
        kept.append(line)

    if not options:
        return "".join(kept)

    if kept and not kept[-1].endswith(("\n", "\r")):
        kept[-1] += newline
    block = [BLOCK_BEGIN, *options, BLOCK_END]
    return "".join(kept) + newline.join(block) + newline


def jvm_options_rewriter() -> Customizer:
    """Build the customizer writing caller JVM options into the options file."""

    def transform(content: str, context: CustomizerContext) -> str:
        return rewrite_jvm_options(content, context.config.jvm_options)

    return Customizer(
        name="jvm-options",
        target=jvm_options_file,
        transform=transform,
        applies=_has_jvm_options_file,
    )


def java_compatibility_patch() -> tuple[Customizer, Customizer]:
    """Build the togglers that let pre-4.0 distributions start on newer JVMs.

    Disables ``-XX:`` lines in ``jvm.options`` and ``-Xloggc`` lines in the
    environment script.
    """
    return (
        line_toggler(
            "java-compatibility-jvm-options",
            lambda _: JVM_OPTIONS,
            r"-XX:",
            applies=_before_v4_with_jvm_options_file,
        ),
        line_toggler(
            "java-compatibility-env-script",
            env_script,
            r"-Xloggc",
            applies=_before_v4,
        ),
    )


# =============================================================================
# Environment script
# =============================================================================


def set_jmx_port(content: str, port: int) -> str:
    """Rewrite every ``JMX_PORT`` assignment to ``port``.

    Raises:
        ValueError: If the script has no ``JMX_PORT`` assignment.
    """
    updated, count = _JMX_ASSIGNMENT.subn(lambda m: f'{m.group(1)}"{port}"{m.group(3)}', content)
    if count == 0:
        msg = "no JMX_PORT assignment found"
        raise ValueError(msg)
    return updated


def jmx_port_patch() -> Customizer:
    """Build the customizer setting the JMX port in the environment script."""

    def transform(content: str, context: CustomizerContext) -> str:
        port = context.config.jmx_port
        if port is None:
            msg = "jmx_port is not set"
            raise ValueError(msg)
        return set_jmx_port(content, port)

    return Customizer(name="jmx-port", target=env_script, transform=transform)


# =============================================================================
# cassandra.yaml
# =============================================================================


def config_file_values(context: CustomizerContext) -> dict[str, Any]:
    """Return the ``cassandra.yaml`` values derived from the node config."""
    config = context.config
    is_v4 = context.version.is_at_least(_V4)
    values: dict[str, Any] = {}

    for name, port in config.ports.items():
        if name is PortName.JMX:
            continue
        values[name.value] = port

    values["listen_address"] = config.listen_address
    values["rpc_address"] = config.rpc_address
    if config.broadcast_address is not None:
        values["broadcast_address"] = config.broadcast_address
    values["start_native_transport"] = config.start_native_transport
    if not is_v4:
        values["start_rpc"] = config.start_rpc

    seed = config.broadcast_address or config.listen_address
    if is_v4:
        seed = f"{seed}:{config.storage_port}"
    values["seed_provider"] = [
        {"class_name": SEED_PROVIDER_CLASS, "parameters": [{"seeds": seed}]},
    ]
    return values


def patch_config_file(content: str, context: CustomizerContext) -> str:
    """Apply node config values and config properties to YAML content.

    Raises:
        ValueError: If the content is not a YAML mapping.
    """
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        msg = f"invalid YAML: {e}"
        raise ValueError(msg) from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        msg = f"expected a mapping at the top level, got {type(data).__name__}"
        raise ValueError(msg)

    data.update(config_file_values(context))
    if not (context.config.start_native_transport and context.config.native_transport_ssl):
        _ = data.pop(PortName.NATIVE_TRANSPORT_SSL.value, None)

    for key, value in context.config.config_properties.items():
        set_nested_key(data, key, value)

    try:
        return yaml.safe_dump(data, sort_keys=False, default_flow_style=False)
    except yaml.YAMLError as e:
        msg = f"cannot serialize configuration: {e}"
        raise ValueError(msg) from e


def config_file_patch() -> Customizer:
    """Build the customizer patching ``conf/cassandra.yaml``."""
    return Customizer(name="config-file", target=lambda _: CONFIG_FILE, transform=patch_config_file)


def default_customizers() -> tuple[Customizer, ...]:
    """Return the customizers applied to every working directory, in order."""
    return (
        config_file_patch(),
        *java_compatibility_patch(),
        jvm_options_rewriter(),
        jmx_port_patch(),
    )
