"""File customizers applied to a working directory before launch."""

from ._base import Customizer, CustomizerContext, always, apply_customizers
from ._builtin import (
    BLOCK_BEGIN,
    BLOCK_END,
    CONFIG_FILE,
    ENV_SCRIPT_POSIX,
    ENV_SCRIPT_WINDOWS,
    JVM_OPTIONS,
    JVM_SERVER_OPTIONS,
    MARKER,
    config_file_patch,
    default_customizers,
    env_script,
    java_compatibility_patch,
    jmx_port_patch,
    jvm_option_key,
    jvm_options_file,
    jvm_options_rewriter,
    line_toggler,
    patch_config_file,
    rewrite_jvm_options,
    set_jmx_port,
    toggle_lines,
)
from ._resources import Resource, add_resource, install_resources

__all__ = [
    "BLOCK_BEGIN",
    "BLOCK_END",
    "CONFIG_FILE",
    "ENV_SCRIPT_POSIX",
    "ENV_SCRIPT_WINDOWS",
    "JVM_OPTIONS",
    "JVM_SERVER_OPTIONS",
    "MARKER",
    "Customizer",
    "CustomizerContext",
    "Resource",
    "add_resource",
    "always",
    "apply_customizers",
    "config_file_patch",
    "default_customizers",
    "env_script",
    "install_resources",
    "java_compatibility_patch",
    "jmx_port_patch",
    "jvm_option_key",
    "jvm_options_file",
    "jvm_options_rewriter",
    "line_toggler",
    "patch_config_file",
    "rewrite_jvm_options",
    "set_jmx_port",
    "toggle_lines",
]
