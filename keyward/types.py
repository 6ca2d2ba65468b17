"""Enums and type aliases for keyward."""

from enum import StrEnum


class CeremonyState(StrEnum):
    ISSUED = "issued"
    CONSUMED = "consumed"
    VERIFIED = "verified"
    PERSISTED = "persisted"
    FAILED = "failed"


class AttestationType(StrEnum):
    NONE = "none"
    SELF = "self"
    BASIC = "basic"


class ChallengeStoreBackend(StrEnum):
    MEMORY = "memory"
    DATABASE = "database"
