"""Encoding and decoding of the ERP gateway's dataset envelopes."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence


def decode_entities(entities: Optional[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """
    Turn a ``loadRecords`` entities block into name-keyed records.

    Field ``i`` of ``metadata.fields.field`` names the positional key ``f{i}``
    of each entity. Positions missing from an entity are left out of its
    record. A single match arrives as a bare object rather than a list.
    """
    if not entities or not entities.get("entity"):
        return []

    fields = entities.get("metadata", {}).get("fields", {}).get("field", [])
    if isinstance(fields, Mapping):
        fields = [fields]
    names = [field["name"] for field in fields]

    raw_entities = entities["entity"]
    if isinstance(raw_entities, Mapping):
        raw_entities = [raw_entities]

    records: List[Dict[str, Any]] = []
    for raw in raw_entities:
        record: Dict[str, Any] = {}
        for index, name in enumerate(names):
            cell = raw.get(f"f{index}")
            if isinstance(cell, Mapping) and "$" in cell:
                record[name] = cell["$"]
        records.append(record)
    return records


def build_load_records_payload(
    root_entity: str,
    fields: Iterable[str],
    *,
    criteria: Optional[str] = None,
    order_by: Optional[str] = None,
) -> Dict[str, Any]:
    """Request the full result set of ``root_entity`` with paging disabled."""
    data_set: Dict[str, Any] = {
        "rootEntity": root_entity,
        "includePresentationFields": "N",
        "offsetPage": None,
        "disableRowsLimit": True,
        "entity": {"fieldset": {"list": ", ".join(fields)}},
    }
    if criteria:
        data_set["criteria"] = {"expression": {"$": criteria}}
    if order_by:
        data_set["orderBy"] = {"expression": {"$": order_by}}
    return {"requestBody": {"dataSet": data_set}}


def build_save_payload(
    entity_name: str,
    fields: Sequence[str],
    values: Mapping[str, Any],
    *,
    pk: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Build a ``DatasetSP.save`` command for one record.

    ``values`` is keyed by field name. Positions in the envelope are 1-indexed
    over ``fields[1:]``; ``fields[0]`` is the key column carried by ``pk``.
    """
    positional = {
        str(position): values.get(name)
        for position, name in enumerate(fields[1:], start=1)
    }
    record: Dict[str, Any] = {"values": positional}
    if pk:
        record["pk"] = {key: str(value) for key, value in pk.items()}
    return {
        "serviceName": "DatasetSP.save",
        "requestBody": {
            "entityName": entity_name,
            "standAlone": False,
            "fields": list(fields),
            "records": [record],
        },
    }


__all__ = ["build_load_records_payload", "build_save_payload", "decode_entities"]
