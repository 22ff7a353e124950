"""Utilities for loading seed questions for the practice-test bank from disk."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

QUESTION_BANK_DIR = Path(__file__).resolve().parent / "question_bank"


def _safe_load_json(path: Path) -> Any:
    try:
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    except Exception as exc:
        print(f"[question_bank] failed to load '{path}': {exc}")
        return None


def _sorted_modules(modules: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    def _sort_key(mod: Dict[str, Any]):
        order = mod.get("order")
        try:
            order_val = int(order)
        except Exception:
            order_val = float("inf")
        return (order_val, str(mod.get("module_id") or "").lower())

    return sorted([dict(m) for m in modules if isinstance(m, dict)], key=_sort_key)


def _module_questions(module: Dict[str, Any]) -> List[Dict[str, Any]]:
    module_id = module.get("module_id")
    out: List[Dict[str, Any]] = []
    for q in module.get("questions") or []:
        if not isinstance(q, dict):
            continue
        item = dict(q)
        # module-level id unless the question overrides it
        item.setdefault("module_id", module_id)
        out.append(item)
    return out


def load_question_bank(directory: Optional[Path] = None) -> List[Dict[str, Any]]:
    """
    Read every *.json module file under `directory` (default: question_bank/)
    and return the flattened list of questions in module order.
    """
    if directory is None:
        return list(_load_default())
    return _load(Path(directory))


@lru_cache(maxsize=1)
def _load_default() -> tuple:
    return tuple(_load(QUESTION_BANK_DIR))


def _load(directory: Path) -> List[Dict[str, Any]]:
    if not directory.is_dir():
        print(f"[question_bank] directory missing: {directory}")
        return []
    modules = []
    for path in sorted(directory.glob("*.json")):
        data = _safe_load_json(path)
        if isinstance(data, dict):
            modules.append(data)
    questions: List[Dict[str, Any]] = []
    for module in _sorted_modules(modules):
        questions.extend(_module_questions(module))
    return questions


__all__ = ["load_question_bank", "QUESTION_BANK_DIR"]
