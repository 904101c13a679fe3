import json
import os
import re
from dataclasses import fields
from typing import Any, Dict, List, Optional

from threadstitch.quantization.catalog import ThreadCatalog
from threadstitch.slicer.parameters import EmbroideryParameters
from threadstitch.utils.result import ParameterError

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
CATALOG_FILE = "thread_catalogs.json"


def _load_catalog_file(path: Optional[str] = None) -> Dict[str, Any]:
    path = path or os.path.join(BASE_DIR, CATALOG_FILE)
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def load_thread_catalogs(path: Optional[str] = None) -> List[ThreadCatalog]:
    data = _load_catalog_file(path)
    return [ThreadCatalog.from_records(name, records) for name, records in data["catalogs"].items()]


def load_thread_catalog(name: Optional[str] = None, path: Optional[str] = None) -> ThreadCatalog:
    """Return one bundled catalog, the default one when ``name`` is None."""

    data = _load_catalog_file(path)
    name = name or data["default"]
    try:
        records = data["catalogs"][name]
    except KeyError:
        known = ", ".join(sorted(data["catalogs"]))
        raise ParameterError(f"Unknown thread catalog '{name}' (available: {known})") from None
    return ThreadCatalog.from_records(name, records)


def _snake_case(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def parameters_from_dict(data: Dict[str, Any]) -> EmbroideryParameters:
    known = {f.name for f in fields(EmbroideryParameters)}
    values: Dict[str, Any] = {}
    unknown = []
    for key, value in data.items():
        name = _snake_case(key)
        if name not in known:
            unknown.append(key)
            continue
        values[name] = value
    if unknown:
        raise ParameterError("Unknown parameter keys: " + ", ".join(sorted(unknown)))
    return EmbroideryParameters(**values)


def load_parameters(path: str) -> EmbroideryParameters:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ParameterError("Parameter file must contain a JSON object")
    return parameters_from_dict(data)


def dump_parameters(params: EmbroideryParameters, path: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(params.to_dict(), f, indent=2)
