"""
Parser for verbose TVM logs.

The emulator's VM log is one entry per line. Only a handful of line shapes
matter for diagnosis; everything else is kept as VmUnknown so entry indices
stay meaningful.

Recognized lines:
    stack: [ 1 C{B5EE9C72...} ]
    code cell hash: 4F5F... offset: 887
    execute CTOS
    handling exception code 9: failed to load library cell
    default exception handler, terminating vm with exit code 9
    gas remaining: 999000
"""

import re
from collections.abc import Sequence
from dataclasses import dataclass, field

LIBRARY_LOAD_FAILURE = "failed to load library cell"


# =============================================================================
# Stack Items
# =============================================================================


@dataclass(frozen=True)
class StackInt:
    value: int


@dataclass(frozen=True)
class StackCell:
    """A cell on the stack, printed as C{<hex BOC>}."""

    boc: bytes


@dataclass(frozen=True)
class StackOther:
    """Any other stack item (slices, builders, tuples, continuations, null)."""

    text: str


StackItem = StackInt | StackCell | StackOther


# =============================================================================
# Entries
# =============================================================================


@dataclass(frozen=True)
class VmStack:
    stack: list[StackItem] = field(default_factory=list)


@dataclass(frozen=True)
class VmLocation:
    code_hash: str
    offset: int


@dataclass(frozen=True)
class VmExecute:
    instr: str


@dataclass(frozen=True)
class VmException:
    code: int
    message: str


@dataclass(frozen=True)
class VmExceptionHandler:
    exit_code: int


@dataclass(frozen=True)
class VmGas:
    remaining: int


@dataclass(frozen=True)
class VmUnknown:
    text: str


VmLogEntry = VmStack | VmLocation | VmExecute | VmException | VmExceptionHandler | VmGas | VmUnknown

_LOCATION_RE = re.compile(r"^code cell hash: ([0-9A-Fa-f]+) offset: (\d+)$")
_EXCEPTION_RE = re.compile(r"^handling exception code (-?\d+): (.*)$")
_HANDLER_RE = re.compile(r"^default exception handler, terminating vm with exit code (-?\d+)$")
_GAS_RE = re.compile(r"^gas remaining: (-?\d+)$")
_CELL_RE = re.compile(r"^C\{([0-9A-Fa-f]*)\}$")
_INT_RE = re.compile(r"^-?\d+$")


def parse_stack(text: str) -> list[StackItem]:
    """
    Split a stack dump body into top-level items.

    Nested tuples and braced payloads stay whole; the last item is the
    top of the stack.
    """
    items: list[StackItem] = []
    depth = 0
    token: list[str] = []

    for char in text:
        if char in "[({":
            depth += 1
        elif char in "])}":
            depth -= 1
        if char.isspace() and depth == 0:
            if token:
                items.append(_stack_item("".join(token)))
                token = []
            continue
        token.append(char)

    if token:
        items.append(_stack_item("".join(token)))
    return items


def _stack_item(token: str) -> StackItem:
    cell = _CELL_RE.match(token)
    if cell:
        return StackCell(boc=bytes.fromhex(cell.group(1)))
    if _INT_RE.match(token):
        return StackInt(value=int(token))
    return StackOther(text=token)


def parse_line(line: str) -> VmLogEntry:
    """Parse a single VM log line."""
    line = line.strip()

    if line.startswith("stack: [") and line.endswith("]"):
        return VmStack(stack=parse_stack(line[len("stack: [") : -1]))
    if line.startswith("execute "):
        return VmExecute(instr=line[len("execute ") :].strip())

    match = _LOCATION_RE.match(line)
    if match:
        return VmLocation(code_hash=match.group(1).upper(), offset=int(match.group(2)))
    match = _EXCEPTION_RE.match(line)
    if match:
        return VmException(code=int(match.group(1)), message=match.group(2).strip())
    match = _HANDLER_RE.match(line)
    if match:
        return VmExceptionHandler(exit_code=int(match.group(1)))
    match = _GAS_RE.match(line)
    if match:
        return VmGas(remaining=int(match.group(1)))

    return VmUnknown(text=line)


def parse_vm_log(log: str) -> list[VmLogEntry]:
    """Parse a VM log into entries, skipping blank lines."""
    return [parse_line(line) for line in log.splitlines() if line.strip()]


def find_missing_library_cell(entries: Sequence[VmLogEntry]) -> bytes | None:
    """
    Detect the missing-library failure signature.

    The log must end with, in order: a stack dump, a code location, `execute
    CTOS`, the "failed to load library cell" exception and the default
    exception handler. Exit code 9 alone is not enough: it also means plain
    cell underflow.

    Returns:
        BOC of the top-of-stack cell CTOS failed on, or None if the log does
        not end with the signature
    """
    if len(entries) < 5:
        return None

    stack, location, execute, exception, handler = entries[-5:]
    if not (
        isinstance(stack, VmStack)
        and isinstance(location, VmLocation)
        and isinstance(execute, VmExecute)
        and execute.instr == "CTOS"
        and isinstance(exception, VmException)
        and exception.message == LIBRARY_LOAD_FAILURE
        and isinstance(handler, VmExceptionHandler)
    ):
        return None

    if not stack.stack:
        return None
    top = stack.stack[-1]
    return top.boc if isinstance(top, StackCell) else None
