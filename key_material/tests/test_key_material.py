"""Unit tests for key generation, persistence and genesis export."""

import tempfile
import unittest
from pathlib import Path

from key_material.generator import InsufficientEntropy, KeyMaterialGenerator
from key_material.genesis import build_allocation, merge_into_chainspec
from key_material.keystore import CsvKeyStore, MalformedRecord, PersistenceError
from key_material.models import KeyPair, KeyRecord, derive_address, records_from_key_pairs

KEY_ONE = "0x" + "00" * 31 + "01"
ADDRESS_ONE = "0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf"
DOCS_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
DOCS_ADDRESS = "0x2c7536E3605D9C16a7a3D7b1898e529396a65c23"


def _counter_entropy():
    state = {"next": 1}

    def provider(n: int) -> bytes:
        value = state["next"]
        state["next"] += 1
        return value.to_bytes(n, "big")

    return provider


class KeyPairTests(unittest.TestCase):
    def test_address_is_derived_from_key(self) -> None:
        self.assertEqual(KeyPair(private_key=DOCS_KEY).address, DOCS_ADDRESS)
        self.assertEqual(derive_address(KEY_ONE), ADDRESS_ONE)

    def test_key_without_prefix_is_normalized(self) -> None:
        pair = KeyPair(private_key=DOCS_KEY[2:].upper())
        self.assertEqual(pair.private_key, DOCS_KEY)
        self.assertEqual(pair.address, DOCS_ADDRESS)

    def test_repr_hides_private_key(self) -> None:
        pair = KeyPair(private_key=DOCS_KEY)
        self.assertNotIn(DOCS_KEY[2:], repr(pair))
        self.assertNotIn(DOCS_KEY[2:], repr(KeyRecord.from_key_pair(0, pair)))

    def test_invalid_key_rejected(self) -> None:
        with self.assertRaises(ValueError):
            KeyPair(private_key="0x1234")
        with self.assertRaises(ValueError):
            KeyPair(private_key="not-hex")


class KeyMaterialGeneratorTests(unittest.TestCase):
    def test_generates_requested_count(self) -> None:
        pairs = list(KeyMaterialGenerator().generate(3))
        self.assertEqual(len(pairs), 3)
        self.assertEqual(len({pair.private_key for pair in pairs}), 3)

    def test_zero_count_is_empty(self) -> None:
        self.assertEqual(list(KeyMaterialGenerator().generate(0)), [])

    def test_negative_count_rejected(self) -> None:
        with self.assertRaises(ValueError):
            KeyMaterialGenerator().generate(-1)

    def test_generation_is_lazy(self) -> None:
        calls = []

        def provider(n: int) -> bytes:
            calls.append(n)
            return (len(calls)).to_bytes(n, "big")

        iterator = KeyMaterialGenerator(entropy_provider=provider).generate(5)
        self.assertEqual(calls, [])
        next(iterator)
        self.assertEqual(len(calls), 1)

    def test_injected_entropy_is_used(self) -> None:
        pairs = list(KeyMaterialGenerator(entropy_provider=_counter_entropy()).generate(1))
        self.assertEqual(pairs[0].address, ADDRESS_ONE)

    def test_duplicate_and_zero_secrets_are_redrawn(self) -> None:
        draws = iter([b"\x00" * 32, b"\x00" * 31 + b"\x01", b"\x00" * 31 + b"\x01", b"\x00" * 31 + b"\x02"])
        generator = KeyMaterialGenerator(entropy_provider=lambda n: next(draws))
        pairs = list(generator.generate(2))
        self.assertEqual(pairs[0].private_key, KEY_ONE)
        self.assertEqual(pairs[1].private_key, "0x" + "00" * 31 + "02")

    def test_failing_entropy_source(self) -> None:
        def broken(n: int) -> bytes:
            raise OSError("no randomness")

        with self.assertRaises(InsufficientEntropy):
            list(KeyMaterialGenerator(entropy_provider=broken).generate(1))

    def test_short_entropy_read(self) -> None:
        generator = KeyMaterialGenerator(entropy_provider=lambda n: b"\x01" * 8)
        with self.assertRaises(InsufficientEntropy):
            list(generator.generate(1))


class CsvKeyStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tempdir = tempfile.TemporaryDirectory()
        self.path = Path(self.tempdir.name) / "keys.csv"
        self.store = CsvKeyStore()

    def tearDown(self) -> None:
        self.tempdir.cleanup()

    def test_round_trip_preserves_order(self) -> None:
        records = records_from_key_pairs(KeyMaterialGenerator().generate(3))
        self.store.write(records, self.path)
        loaded = self.store.read(self.path)
        self.assertEqual(loaded, records)
        for record in loaded:
            self.assertEqual(record.address, derive_address(record.private_key))

    def test_file_layout(self) -> None:
        records = records_from_key_pairs([KeyPair(private_key=DOCS_KEY)])
        self.store.write(records, self.path)
        lines = self.path.read_text(encoding="utf-8").splitlines()
        self.assertEqual(lines[0], "PrivateKey,Address")
        self.assertEqual(lines[1], f"{DOCS_KEY},{DOCS_ADDRESS}")

    def test_write_rejects_out_of_order_indexes(self) -> None:
        pair = KeyPair(private_key=DOCS_KEY)
        with self.assertRaises(ValueError):
            self.store.write([KeyRecord.from_key_pair(4, pair)], self.path)
        self.assertFalse(self.path.exists())

    def test_failed_write_keeps_previous_file(self) -> None:
        records = records_from_key_pairs([KeyPair(private_key=DOCS_KEY)])
        self.store.write(records, self.path)
        before = self.path.read_text(encoding="utf-8")

        def bad_records():
            yield records[0]
            raise RuntimeError("interrupted")

        with self.assertRaises(RuntimeError):
            self.store.write(bad_records(), self.path)
        self.assertEqual(self.path.read_text(encoding="utf-8"), before)
        self.assertEqual(sorted(p.name for p in Path(self.tempdir.name).iterdir()), ["keys.csv"])

    def test_write_to_missing_directory(self) -> None:
        with self.assertRaises(PersistenceError):
            self.store.write([], Path(self.tempdir.name) / "missing" / "keys.csv")

    def test_read_missing_file(self) -> None:
        with self.assertRaises(PersistenceError):
            self.store.read(self.path)

    def test_malformed_rows_are_reported_per_row(self) -> None:
        self.path.write_text(
            "PrivateKey,Address\n"
            f"{KEY_ONE},{ADDRESS_ONE}\n"
            "0xzz,0x0000000000000000000000000000000000000000\n"
            f"{DOCS_KEY},{ADDRESS_ONE}\n"
            f"{DOCS_KEY}\n"
            f"{DOCS_KEY},{DOCS_ADDRESS}\n",
            encoding="utf-8",
        )
        scan = self.store.scan(self.path)
        self.assertEqual([record.address for record in scan.records], [ADDRESS_ONE, DOCS_ADDRESS])
        self.assertEqual([record.index for record in scan.records], [0, 4])
        self.assertEqual([error.row_number for error in scan.errors], [3, 4, 5])

        with self.assertRaises(MalformedRecord) as ctx:
            self.store.read(self.path)
        self.assertEqual(ctx.exception.row_number, 3)
        self.assertEqual(len(ctx.exception.errors), 3)

    def test_legacy_header_and_quoted_values(self) -> None:
        self.path.write_text(
            f'Privkey,PubKey\n"{DOCS_KEY[2:]}","{DOCS_ADDRESS.lower()}"\n',
            encoding="utf-8",
        )
        records = self.store.read(self.path)
        self.assertEqual(records, (KeyRecord(index=0, private_key=DOCS_KEY, address=DOCS_ADDRESS),))

    def test_unexpected_header(self) -> None:
        self.path.write_text("key,addr\n", encoding="utf-8")
        with self.assertRaises(MalformedRecord):
            self.store.read(self.path)


class GenesisAllocationTests(unittest.TestCase):
    def test_allocation_per_record(self) -> None:
        records = records_from_key_pairs([KeyPair(private_key=DOCS_KEY)])
        allocation = build_allocation(records, balance_wei=5)
        self.assertEqual(allocation, {DOCS_ADDRESS: {"balance": "5"}})

    def test_default_balance(self) -> None:
        records = records_from_key_pairs([KeyPair(private_key=DOCS_KEY)])
        allocation = build_allocation(records)
        self.assertEqual(allocation[DOCS_ADDRESS]["balance"], "10000000000000000000000")

    def test_merge_keeps_existing_accounts(self) -> None:
        chainspec = {"name": "dev", "accounts": {"0x01": {"balance": "1"}}}
        merged = merge_into_chainspec(chainspec, {DOCS_ADDRESS: {"balance": "2"}})
        self.assertEqual(merged["accounts"], {"0x01": {"balance": "1"}, DOCS_ADDRESS: {"balance": "2"}})
        self.assertEqual(chainspec["accounts"], {"0x01": {"balance": "1"}})

    def test_merge_rejects_non_object_section(self) -> None:
        with self.assertRaises(ValueError):
            merge_into_chainspec({"accounts": []}, {})


if __name__ == "__main__":
    unittest.main()
