"""Custom property <-> custom field translation"""

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from incident_bridge.services.artifacts import (
    CustomFieldValue,
    CustomPropertyType,
    CustomPropertyValue,
    format_redmine_date,
    parse_datetime,
)
from incident_bridge.services.mapping_repository import CustomPropertyMappings

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true"}
_FALSE_VALUES = {"0", "false"}


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (list, tuple)):
        return all(_is_blank(v) for v in value)
    return str(value).strip() == ""


class CustomFieldTranslator:
    """Type-directed translation driven by the project's custom property mappings."""

    def __init__(self, custom_properties: List[CustomPropertyMappings]):
        # Unmapped properties are skipped entirely
        self.mapped = [cp for cp in custom_properties if cp.mapping is not None]

    @staticmethod
    def _field_id(cp: CustomPropertyMappings) -> Optional[int]:
        try:
            return int(cp.mapping.external_key)
        except (TypeError, ValueError):
            logger.warning(
                f"Custom property '{cp.definition.name}' is mapped to '{cp.mapping.external_key}', "
                "which is not a Redmine custom field id"
            )
            return None

    # -- Spira -> Redmine ---------------------------------------------------

    def to_external(self, values: List[CustomPropertyValue], item: str = "") -> List[CustomFieldValue]:
        by_number: Dict[int, CustomPropertyValue] = {v.property_number: v for v in values}
        fields: List[CustomFieldValue] = []
        for cp in self.mapped:
            definition = cp.definition
            if definition.property_type == CustomPropertyType.USER:
                continue
            value = by_number.get(definition.property_number)
            if value is None:
                continue
            field_id = self._field_id(cp)
            if field_id is None:
                continue

            ptype = definition.property_type
            if ptype == CustomPropertyType.TEXT:
                fields.append(CustomFieldValue(field_id, value.string_value or ""))
            elif ptype == CustomPropertyType.INTEGER:
                fields.append(CustomFieldValue(field_id, "" if value.integer_value is None else str(value.integer_value)))
            elif ptype == CustomPropertyType.DECIMAL:
                fields.append(CustomFieldValue(field_id, "" if value.decimal_value is None else str(value.decimal_value)))
            elif ptype == CustomPropertyType.BOOLEAN:
                if value.boolean_value is None:
                    fields.append(CustomFieldValue(field_id, ""))
                else:
                    fields.append(CustomFieldValue(field_id, "1" if value.boolean_value else "0"))
            elif ptype == CustomPropertyType.DATE:
                fields.append(CustomFieldValue(field_id, format_redmine_date(value.date_time_value) or ""))
            elif ptype == CustomPropertyType.LIST:
                if value.integer_value is None:
                    fields.append(CustomFieldValue(field_id, ""))
                    continue
                mapped = cp.values.by_internal(cp.mapping.project_id, value.integer_value)
                if mapped is None or not mapped.external_key:
                    logger.warning(
                        f"{item}: no Redmine value mapped for list value {value.integer_value} "
                        f"of custom property '{definition.name}'"
                    )
                    continue
                fields.append(CustomFieldValue(field_id, mapped.external_key))
            elif ptype == CustomPropertyType.MULTI_LIST:
                keys = []
                for member in value.integer_list_value or []:
                    mapped = cp.values.by_internal(cp.mapping.project_id, member)
                    if mapped is not None and mapped.external_key:
                        keys.append(mapped.external_key)
                # An explicit empty list clears the Redmine field
                fields.append(CustomFieldValue(field_id, keys, multiple=True))
        return fields

    # -- Redmine -> Spira ---------------------------------------------------

    def to_internal(self, fields: List[CustomFieldValue], item: str = "") -> List[CustomPropertyValue]:
        by_id: Dict[int, CustomFieldValue] = {f.field_id: f for f in fields}
        values: List[CustomPropertyValue] = []
        for cp in self.mapped:
            definition = cp.definition
            if definition.property_type == CustomPropertyType.USER:
                continue
            field_id = self._field_id(cp)
            if field_id is None:
                continue
            external = by_id.get(field_id)
            if external is None:
                logger.warning(
                    f"{item}: Redmine custom field {field_id} mapped to '{definition.name}' is not present on the issue"
                )
                continue

            result = CustomPropertyValue(
                property_number=definition.property_number,
                custom_property_id=definition.custom_property_id,
            )
            if _is_blank(external.value):
                # Cleared on the Redmine side
                values.append(result)
                continue

            if self._apply(cp, external.value, result, item):
                values.append(result)
        return values

    @staticmethod
    def _apply(cp: CustomPropertyMappings, raw: Any, result: CustomPropertyValue, item: str) -> bool:
        definition = cp.definition
        ptype = definition.property_type
        text = raw if not isinstance(raw, (list, tuple)) else (raw[0] if raw else "")
        text = str(text).strip()
        try:
            if ptype == CustomPropertyType.TEXT:
                result.string_value = str(raw)
            elif ptype == CustomPropertyType.INTEGER:
                result.integer_value = int(text)
            elif ptype == CustomPropertyType.DECIMAL:
                result.decimal_value = Decimal(text)
            elif ptype == CustomPropertyType.BOOLEAN:
                lowered = text.lower()
                if lowered in _TRUE_VALUES:
                    result.boolean_value = True
                elif lowered in _FALSE_VALUES:
                    result.boolean_value = False
                else:
                    raise ValueError(f"'{text}' is not a boolean")
            elif ptype == CustomPropertyType.DATE:
                parsed: Optional[datetime] = parse_datetime(text)
                result.date_time_value = parsed
            elif ptype == CustomPropertyType.LIST:
                mapped = cp.values.by_external(cp.mapping.project_id, text)
                if mapped is None:
                    logger.warning(
                        f"{item}: Redmine value '{text}' of custom field {cp.mapping.external_key} "
                        f"has no mapped list value for '{definition.name}'"
                    )
                    return False
                result.integer_value = mapped.internal_id
            elif ptype == CustomPropertyType.MULTI_LIST:
                members = raw if isinstance(raw, (list, tuple)) else [raw]
                ids = []
                for member in members:
                    mapped = cp.values.by_external(cp.mapping.project_id, str(member).strip())
                    if mapped is not None:
                        ids.append(mapped.internal_id)
                result.integer_list_value = ids
            else:
                return False
        except (ValueError, InvalidOperation) as e:
            logger.warning(f"{item}: skipping value '{raw}' for custom property '{definition.name}': {e}")
            return False
        return True


def apply_custom_property_values(current: List[CustomPropertyValue], updates: List[CustomPropertyValue]) -> List[CustomPropertyValue]:
    """Replace values by property number, keeping untouched properties."""
    merged = {v.property_number: v for v in current}
    for update in updates:
        merged[update.property_number] = update
    return [merged[k] for k in sorted(merged)]
