"""
Codec and emulator backends.

The tonpy backend needs the optional `tonpy` dependency, which ships the
native transaction emulator, so it is imported only when requested.
"""

from txretrace.codec import LedgerCodec
from txretrace.emulator import Emulator
from txretrace.errors import BackendUnavailableError


def load_tonpy_backend() -> tuple[LedgerCodec, Emulator]:
    """
    Build the tonpy codec and emulator.

    Raises:
        BackendUnavailableError: If tonpy is not installed
    """
    try:
        from txretrace.backends.tonpy import TonpyCodec, TonpyEmulator
    except ImportError as e:
        raise BackendUnavailableError(
            backend="tonpy",
            message=f"tonpy backend could not be imported: {e}",
            suggestion='Install it with: pip install "txretrace[tonpy]"',
        ) from e

    codec = TonpyCodec()
    return codec, TonpyEmulator(codec)


__all__ = ["load_tonpy_backend"]
