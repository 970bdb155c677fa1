"""Command validation applied before any MCP server subprocess is spawned.

Transports depend on the ``CommandValidator`` protocol only; hosts with their
own policy engine plug it in through the transport factory. The default
implementation checks executables against an allowlist and rejects
arguments that carry shell injection patterns.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import PurePath
from typing import Protocol, runtime_checkable

# Known-safe executables; anything else needs allow_unlisted=True
ALLOWED_EXECUTABLES = frozenset(
    {
        # Editors
        "code",
        "vim",
        "nvim",
        "nano",
        "emacs",
        # Version control
        "git",
        # Node / package runners
        "node",
        "npm",
        "npx",
        "pnpm",
        "bun",
        "bunx",
        "tsx",
        "ts-node",
        # System utils (safe subset)
        "which",
        "where",
        "echo",
        "cat",
        "ls",
        "find",
        "grep",
        "head",
        "tail",
        "wc",
        "sort",
        "uniq",
        "diff",
        # MCP servers
        "ollama",
        "uvx",
        "uv",
        "python",
        "python3",
        "docker",
    }
)

_EXECUTABLE_METACHARACTERS = re.compile(r"[;|&$`\"'<>(){}\[\]!#~\n\r]")
_COMMAND_SUBSTITUTION = (re.compile(r"\$\(.*\)", re.DOTALL), re.compile(r"`.*`", re.DOTALL))


@dataclass(frozen=True)
class ValidationResult:
    """Verdict of a validation check."""

    valid: bool
    reason: str | None = None

    @classmethod
    def ok(cls) -> ValidationResult:
        return cls(valid=True)

    @classmethod
    def reject(cls, reason: str) -> ValidationResult:
        return cls(valid=False, reason=reason)


@runtime_checkable
class CommandValidator(Protocol):
    """Validates a subprocess command line before it is spawned."""

    def validate_executable(self, command: str, allow_unlisted: bool = False) -> ValidationResult:
        ...

    def validate_args(self, args: Sequence[str]) -> ValidationResult:
        ...


class DefaultCommandValidator:
    """Allowlist plus injection-pattern checks.

    Arguments are passed to the OS as an array (no shell), so metacharacters
    in arguments cannot start new commands. Command substitution and null
    bytes are still rejected outright.
    """

    def __init__(self, allowed_executables: frozenset[str] | set[str] | None = None):
        self.allowed_executables = frozenset(
            allowed_executables if allowed_executables is not None else ALLOWED_EXECUTABLES
        )

    def validate_executable(self, command: str, allow_unlisted: bool = False) -> ValidationResult:
        if not command or not isinstance(command, str):
            return ValidationResult.reject("Empty or invalid executable name")

        if ".." in command or "\x00" in command:
            return ValidationResult.reject("Path traversal detected in executable")

        if _EXECUTABLE_METACHARACTERS.search(command):
            return ValidationResult.reject("Shell metacharacters in executable name")

        if allow_unlisted:
            return ValidationResult.ok()

        base_name = executable_name(command)
        if base_name not in self.allowed_executables:
            return ValidationResult.reject(
                f"Executable '{base_name}' not in allowlist. Use allow_unlisted to bypass."
            )
        return ValidationResult.ok()

    def validate_args(self, args: Sequence[str]) -> ValidationResult:
        if isinstance(args, str) or not isinstance(args, Sequence):
            return ValidationResult.reject("Arguments must be a list")

        for index, arg in enumerate(args):
            if not isinstance(arg, str):
                return ValidationResult.reject(f"Argument at index {index} is not a string")
            if "\x00" in arg:
                return ValidationResult.reject(f"Null byte in argument at index {index}")
            if any(pattern.search(arg) for pattern in _COMMAND_SUBSTITUTION):
                return ValidationResult.reject(
                    f"Command substitution detected in argument at index {index}: {arg}"
                )
        return ValidationResult.ok()


def executable_name(command: str) -> str:
    """Bare, lower-cased binary name: ``C:\\bin\\Node.exe`` -> ``node``."""
    name = PurePath(command.replace("\\", "/")).name.lower()
    if name.endswith(".exe"):
        name = name[: -len(".exe")]
    return name
