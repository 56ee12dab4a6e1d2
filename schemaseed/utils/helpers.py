"""General helper functions for schemaseed."""
import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

# Common user spellings mapped to the dialect names SQLGlot understands
DIALECT_MAP = {
    "postgresql": "postgres",
    "postgres": "postgres",
    "supabase": "postgres",
    "mysql": "mysql",
    "mariadb": "mysql",
    "sqlite": "sqlite",
    "sqlite3": "sqlite",
}


def normalize_dialect(dialect: Optional[str]) -> str:
    """Normalize database dialect names to be compatible with SQLGlot."""
    if not dialect:
        return "postgres"
    return DIALECT_MAP.get(dialect.lower(), dialect.lower())


def split_names(values: Optional[Iterable[str]]) -> List[str]:
    """Accept repeated and comma-separated table names alike."""
    names: List[str] = []
    for value in values or []:
        for name in value.split(","):
            name = name.strip()
            if name and name not in names:
                names.append(name)
    return names


def load_json_file(path: Path) -> Dict[str, Any]:
    """Read a JSON object from disk."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a JSON object")
    return data
