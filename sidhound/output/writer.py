import json
from typing import Any, Dict, List, Sequence

from ..utils.logging import good


def _records_to_dicts(records: Sequence[Any]) -> List[Dict]:
    """Convert IdentityRecord objects to dicts for serialization."""
    return [record.to_dict() if hasattr(record, "to_dict") else record for record in records]


def results_to_dicts(results: Sequence[Any]) -> List[Dict]:
    """One entry per interrogated server, with its records nested."""
    return [
        {
            "target": result.target,
            "success": result.success,
            "error": result.error,
            "elapsed_ms": round(result.elapsed_ms, 1),
            "records": _records_to_dicts(result.records),
        }
        for result in results
    ]


def write_json(path: str, results: Sequence[Any], silent: bool = False):
    with open(path, "w", encoding="utf-8") as f:
        json.dump(results_to_dicts(results), f, indent=2)
    if not silent:
        good(f"Wrote JSON results to {path}")
