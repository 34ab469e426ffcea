"""Shared fixtures: a small loyalty collection with a few malformed entries."""
from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
import sys

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.store import InMemoryStore


def utc(value: str) -> datetime:
    return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)


def build_documents() -> dict:
    return {
        "doc-1": {
            "user-a": {
                "1": {
                    "fecha_inicio": utc("2024-05-01T08:00:00"),
                    "pago": {"p1": {"tipo": "cash", "total": "10", "propina": "1.5"}},
                    "producto": {"x": {"cantidad": "2", "idproducto": "p-a", "precio": "3", "producto": "A"}},
                },
                "2": {
                    "fecha_inicio": utc("2024-05-02T13:00:00"),
                    "pago": {"p1": {"tipo": "card", "total": 5}},
                    "producto": {
                        "x": {"cantidad": 1, "idproducto": "p-b", "precio": 4, "producto": "B"},
                        "y": {"cantidad": 1, "idproducto": "p-a", "precio": 3, "producto": "A"},
                    },
                },
                "3": {
                    "pago": {"p1": {"tipo": "cash", "total": 100}},
                },
            },
            "user-b": {
                "1": {
                    "fecha_inicio": utc("2024-05-01T20:00:00"),
                    "pago": {"p1": {"tipo": "cash", "total": 3}},
                    "producto": {"x": {"cantidad": 3, "idproducto": "p-c", "precio": 2, "producto": "C"}},
                },
                "2": {
                    "fecha_inicio": "not a date",
                    "pago": {"p1": {"tipo": "cash", "total": 50}},
                },
            },
        },
        "doc-2": {
            "user-c": {
                "1": {
                    "fecha_inicio": utc("2024-06-15T02:00:00"),
                    "pago": {"p1": {"total": 7}},
                },
            },
        },
    }


@pytest.fixture
def raw_documents() -> list:
    return list(build_documents().values())


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore(
        {
            "DatosFidelizacion": build_documents(),
            "Fidelizacion": {
                "c1": {"cliente": "Ana", "fecha": utc("2024-05-01T10:00:00"), "puntos": "120"},
                "c2": {"puntos": None},
            },
        }
    )


class FailingStore:
    """Document store whose reads always fail."""

    def __init__(self) -> None:
        self.calls = 0

    def fetch_all(self, collection: str):
        self.calls += 1
        raise ConnectionError("store unreachable")


@pytest.fixture
def failing_store() -> FailingStore:
    return FailingStore()
