from .generator import EntropyError, InsufficientEntropy, KeyMaterialGenerator
from .genesis import build_allocation, merge_into_chainspec
from .keystore import CsvKeyStore, KeyScan, KeyStore, MalformedRecord, PersistenceError
from .models import KeyPair, KeyRecord, derive_address, records_from_key_pairs

__all__ = [
    "CsvKeyStore",
    "EntropyError",
    "InsufficientEntropy",
    "KeyMaterialGenerator",
    "KeyPair",
    "KeyRecord",
    "KeyScan",
    "KeyStore",
    "MalformedRecord",
    "PersistenceError",
    "build_allocation",
    "derive_address",
    "merge_into_chainspec",
    "records_from_key_pairs",
]
