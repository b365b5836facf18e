"""
Unit tests for the tonpy backend.

Decoding and emulation run against the mainnet transaction that ships with
tonpy (tonpy.data_for_tests). The tonpy-dependent tests are skipped when
tonpy is not installed.
"""

import base64
import binascii
import sys

import pytest

from txretrace.backends import load_tonpy_backend
from txretrace.errors import BackendUnavailableError
from txretrace.libraries import LibraryTable, library_hash


@pytest.fixture
def tonpy():
    return pytest.importorskip("tonpy")


@pytest.fixture
def codec(tonpy):
    from txretrace.backends.tonpy import TonpyCodec

    return TonpyCodec()


@pytest.fixture
def mainnet_tx(tonpy) -> dict:
    from tonpy.data_for_tests.emulator_data import tx

    return tx


def b64(text: str) -> bytes:
    return base64.b64decode(text)


class TestLoadTonpyBackend:
    def test_missing_tonpy(self, monkeypatch):
        monkeypatch.setitem(sys.modules, "tonpy", None)
        monkeypatch.delitem(sys.modules, "txretrace.backends.tonpy", raising=False)

        with pytest.raises(BackendUnavailableError) as exc_info:
            load_tonpy_backend()

        err = exc_info.value
        assert err.context["backend"] == "tonpy"
        assert "txretrace[tonpy]" in err.suggestion

    def test_backend_pair(self, tonpy):
        codec, emulator = load_tonpy_backend()
        assert emulator.codec is codec

    def test_version_names_tonpy(self, tonpy):
        _, emulator = load_tonpy_backend()
        version = emulator.version()
        assert version.release.startswith("tonpy")
        assert version.commit_hash == ""


class TestTonpyAddresses:
    def test_raw(self, codec):
        assert codec.parse_address("0:" + "ab" * 32) == "0:" + "AB" * 32

    def test_user_friendly(self, codec):
        body = bytes([0x11, 0xFF]) + b"\xcd" * 32
        crc = binascii.crc_hqx(body, 0).to_bytes(2, "big")
        friendly = base64.urlsafe_b64encode(body + crc).decode()
        assert codec.parse_address(friendly) == "-1:" + "CD" * 32

    def test_rejects_garbage(self, codec):
        with pytest.raises(ValueError):
            codec.parse_address("AAAA")


class TestTonpyTransaction:
    def test_header(self, codec, mainnet_tx):
        from tonpy import Cell

        decoded = codec.decode_transaction(b64(mainnet_tx["transaction"]))

        assert decoded.lt == mainnet_tx["lt"]
        assert decoded.now == mainnet_tx["now"]
        assert decoded.hash == bytes.fromhex(Cell(mainnet_tx["transaction"]).get_hash())
        assert decoded.description.kind == "generic"

    def test_in_message(self, codec, mainnet_tx):
        from tonpy import Cell

        from txretrace.backends.tonpy import to_cell

        decoded = codec.decode_transaction(b64(mainnet_tx["transaction"]))

        assert decoded.in_msg is not None
        assert decoded.in_msg.dest == decoded.account
        assert to_cell(decoded.in_msg_boc).get_hash() == Cell(mainnet_tx["in_msg"]).get_hash()

    def test_old_state_is_the_account_before(self, codec, mainnet_tx):
        from tonpy import Cell

        decoded = codec.decode_transaction(b64(mainnet_tx["transaction"]))
        account = Cell(mainnet_tx["account_state"]).begin_parse().load_ref()

        assert decoded.old_state_hash == bytes.fromhex(account.get_hash())
        assert decoded.new_state_hash != decoded.old_state_hash

    def test_shard_account(self, codec, mainnet_tx):
        decoded = codec.decode_transaction(b64(mainnet_tx["transaction"]))
        snapshot = codec.decode_shard_account(b64(mainnet_tx["account_state"]))

        assert snapshot.address == decoded.account
        assert snapshot.last_trans_lt < decoded.lt
        assert snapshot.balance > 0


class TestTonpyShardAccount:
    def test_active_account_round_trip(self, codec):
        from tonpy import begin_cell

        from txretrace.backends.tonpy import from_cell
        from txretrace.schema import AccountSnapshot, AccountStateType

        account = AccountSnapshot(
            address="0:" + "AB" * 32,
            balance=10_000_000_000,
            state=AccountStateType.ACTIVE,
            code=from_cell(begin_cell().store_uint(0xFF00F4A4, 32).end_cell()),
            data=from_cell(begin_cell().store_uint(7, 64).end_cell()),
            last_trans_lt=46_999_999_000_000,
            last_trans_hash=b"\x11" * 32,
            storage_last_trans_lt=46_999_999_000_000,
            storage_used_bits=1024,
            storage_used_cells=3,
            storage_last_paid=1_700_000_000,
        )

        assert codec.decode_shard_account(codec.encode_shard_account(account)) == account


class TestTonpyOutActions:
    def test_actions_in_execution_order(self, codec):
        from tonpy import begin_cell

        from txretrace.backends.tonpy import from_cell

        message = (
            begin_cell()
            .store_uint(0, 1)  # int_msg_info
            .store_bool(True)
            .store_bool(True)
            .store_bool(False)
            .store_uint(0, 2)  # addr_none
            .store_address("0:" + "AB" * 32)
            .store_grams(6_000_000_000)
            .store_bool(False)
            .store_grams(0)
            .store_grams(0)
            .store_uint(0, 64)
            .store_uint(0, 32)
            .store_bool(False)
            .store_bool(False)
            .end_cell()
        )
        new_code = begin_cell().store_uint(0xFF00, 16).end_cell()

        send = begin_cell().store_ref(begin_cell().end_cell())
        send = send.store_uint(0x0EC3C86D, 32).store_uint(3, 8).store_ref(message).end_cell()
        set_code = begin_cell().store_ref(send).store_uint(0xAD4DE08E, 32).store_ref(new_code).end_cell()
        reserve = (
            begin_cell()
            .store_ref(set_code)
            .store_uint(0x36E6B809, 32)
            .store_uint(2, 8)
            .store_grams(1_000_000)
            .store_bool(False)
            .end_cell()
        )

        actions = codec.decode_out_actions(from_cell(reserve))

        assert [a.type for a in actions] == ["send_msg", "set_code", "reserve_currency"]
        assert actions[0].mode == 3
        assert actions[0].details == {"kind": "internal", "dest": "0:" + "AB" * 32, "value": 6_000_000_000}
        assert actions[1].details == {"new_code_hash": new_code.get_hash().upper()}
        assert actions[2].details == {"amount": 1_000_000}

    def test_empty_list(self, codec):
        from tonpy import begin_cell

        from txretrace.backends.tonpy import from_cell

        assert codec.decode_out_actions(from_cell(begin_cell().end_cell())) == []

    def test_unknown_action(self, codec):
        from tonpy import begin_cell

        from txretrace.backends.tonpy import from_cell

        c5 = begin_cell().store_ref(begin_cell().end_cell()).store_uint(0xDEADBEEF, 32).end_cell()

        [action] = codec.decode_out_actions(from_cell(c5))
        assert action.type == "unknown"
        assert action.details == {"tag": "0xdeadbeef"}


class TestTonpyLibraries:
    def test_library_dict_reads_back(self, codec):
        from tonpy import VmDict, begin_cell

        from txretrace.backends.tonpy import from_cell, to_cell

        content = begin_cell().store_uint(0xC0DE, 16).end_cell()
        lib_hash = bytes.fromhex(content.get_hash())

        boc = codec.encode_library_dict({lib_hash: from_cell(content)})
        libs = VmDict(256, cell_root=to_cell(boc))

        assert libs.lookup_ref(int.from_bytes(lib_hash, "big")).get_hash() == content.get_hash()

    def test_empty_library_table(self, codec):
        with pytest.raises(ValueError):
            codec.encode_library_dict({})

    def test_inspect_library_cell(self, codec):
        from tonpy import begin_cell

        from txretrace.backends.tonpy import from_cell

        lib_hash = bytes(range(32))
        cell = begin_cell().store_uint(2, 8).store_uint(int.from_bytes(lib_hash, "big"), 256).end_cell(special=True)

        bits = codec.inspect_cell(from_cell(cell))

        assert bits.exotic is True
        assert bits.bit_length == 264
        assert library_hash(bits) == lib_hash

    def test_inspect_ordinary_cell(self, codec):
        from tonpy import begin_cell

        from txretrace.backends.tonpy import from_cell

        bits = codec.inspect_cell(from_cell(begin_cell().store_uint(0b101, 3).end_cell()))

        assert bits.exotic is False
        assert bits.bit_length == 3
        assert bits.data == b"\xa0"


class TestTonpyEmulator:
    @pytest.fixture
    def request_for(self, mainnet_tx):
        from tonpy import Cell, VmDict

        from txretrace.backends.tonpy import from_cell
        from txretrace.emulator import EmulationRequest

        libraries = LibraryTable(
            {
                key.to_bytes(32, "big"): from_cell(value.load_ref())
                for key, value in VmDict(256, cell_root=Cell(mainnet_tx["libs"]))
            }
        )

        def build(**overrides) -> EmulationRequest:
            fields = dict(
                shard_account=b64(mainnet_tx["account_state"]),
                message=b64(mainnet_tx["in_msg"]),
                config=b64(mainnet_tx["config"]),
                libraries=libraries,
                random_seed=mainnet_tx["rand_seed"].to_bytes(32, "big"),
                lt=mainnet_tx["lt"],
                now=mainnet_tx["now"],
            )
            fields.update(overrides)
            return EmulationRequest(**fields)

        return build

    @pytest.mark.asyncio
    async def test_emulates_mainnet_transaction(self, codec, mainnet_tx, request_for):
        from txretrace.backends.tonpy import TonpyEmulator
        from txretrace.emulator import EmulationSuccess

        result = await TonpyEmulator(codec).run_transaction(request_for())

        assert isinstance(result, EmulationSuccess)
        assert result.logs.startswith("elapsed_time")

        emulated = codec.decode_transaction(result.transaction)
        original = codec.decode_transaction(b64(mainnet_tx["transaction"]))
        assert emulated.lt == original.lt
        assert emulated.now == original.now
        assert emulated.account == original.account
        assert emulated.old_state_hash == original.old_state_hash

        snapshot = codec.decode_shard_account(result.shard_account)
        assert snapshot.last_trans_lt == original.lt
        assert snapshot.last_trans_hash == emulated.hash

    @pytest.mark.asyncio
    async def test_engine_error_is_a_failure(self, codec, request_for):
        from tonpy import begin_cell

        from txretrace.backends.tonpy import TonpyEmulator, from_cell
        from txretrace.emulator import EmulationFailure

        garbage = from_cell(begin_cell().store_uint(0xFFFF, 16).end_cell())

        result = await TonpyEmulator(codec).run_transaction(request_for(shard_account=garbage))

        assert isinstance(result, EmulationFailure)
        assert result.error
