import logging
import unittest
from datetime import datetime
from decimal import Decimal

logging.disable(logging.CRITICAL)

PROJECT = 1


def _prop(cp_id, number, ptype, field_key, values=()):
    from incident_bridge.services.artifacts import CustomPropertyDefinition
    from incident_bridge.services.mapping_repository import CustomPropertyMappings, DataMapping, MappingIndex

    return CustomPropertyMappings(
        definition=CustomPropertyDefinition(cp_id, number, f"Prop{number}", ptype),
        mapping=DataMapping(PROJECT, cp_id, field_key) if field_key is not None else None,
        values=MappingIndex(DataMapping(PROJECT, internal, external) for internal, external in values),
    )


def _translator():
    from incident_bridge.services.artifacts import CustomPropertyType as T
    from incident_bridge.services.custom_fields import CustomFieldTranslator

    return CustomFieldTranslator(
        [
            _prop(11, 1, T.TEXT, "101"),
            _prop(12, 2, T.INTEGER, "102"),
            _prop(13, 3, T.DECIMAL, "103"),
            _prop(14, 4, T.BOOLEAN, "104"),
            _prop(15, 5, T.DATE, "105"),
            _prop(16, 6, T.LIST, "106", values=[(500, "Red"), (501, "Green")]),
            _prop(17, 7, T.MULTI_LIST, "107", values=[(600, "Linux"), (601, "Windows"), (602, "Mac")]),
        ]
    )


class CustomFieldRoundTripTests(unittest.TestCase):
    def _round_trip(self, value):
        translator = _translator()
        external = translator.to_external([value])
        self.assertEqual(len(external), 1)
        back = translator.to_internal(external)
        self.assertEqual(len(back), 1)
        return external[0], back[0]

    def test_text(self):
        from incident_bridge.services.artifacts import CustomPropertyValue

        ext, back = self._round_trip(CustomPropertyValue(1, string_value="hello world"))
        self.assertEqual(ext.field_id, 101)
        self.assertEqual(back.string_value, "hello world")

    def test_integer(self):
        from incident_bridge.services.artifacts import CustomPropertyValue

        ext, back = self._round_trip(CustomPropertyValue(2, integer_value=42))
        self.assertEqual(ext.value, "42")
        self.assertEqual(back.integer_value, 42)

    def test_decimal(self):
        from incident_bridge.services.artifacts import CustomPropertyValue

        ext, back = self._round_trip(CustomPropertyValue(3, decimal_value=Decimal("12.50")))
        self.assertEqual(ext.value, "12.50")
        self.assertEqual(back.decimal_value, Decimal("12.50"))

    def test_boolean_both_values(self):
        from incident_bridge.services.artifacts import CustomPropertyValue

        ext, back = self._round_trip(CustomPropertyValue(4, boolean_value=True))
        self.assertEqual(ext.value, "1")
        self.assertIs(back.boolean_value, True)

        ext, back = self._round_trip(CustomPropertyValue(4, boolean_value=False))
        self.assertEqual(ext.value, "0")
        self.assertIs(back.boolean_value, False)

    def test_date_is_utc_normalized(self):
        from datetime import timedelta, timezone

        from incident_bridge.services.artifacts import CustomPropertyValue, normalize_utc_naive

        # 2024-03-05 00:00 UTC expressed in UTC+2
        local = datetime(2024, 3, 5, 2, 0, tzinfo=timezone(timedelta(hours=2)))
        ext, back = self._round_trip(CustomPropertyValue(5, date_time_value=local))
        self.assertEqual(ext.value, "2024-03-05")
        self.assertEqual(back.date_time_value, normalize_utc_naive(local))

    def test_list(self):
        from incident_bridge.services.artifacts import CustomPropertyValue

        ext, back = self._round_trip(CustomPropertyValue(6, integer_value=501))
        self.assertEqual(ext.value, "Green")
        self.assertEqual(back.integer_value, 501)

    def test_multi_list(self):
        from incident_bridge.services.artifacts import CustomPropertyValue

        ext, back = self._round_trip(CustomPropertyValue(7, integer_list_value=[600, 602]))
        self.assertEqual(ext.value, ["Linux", "Mac"])
        self.assertEqual(back.integer_list_value, [600, 602])


class CustomFieldEdgeCaseTests(unittest.TestCase):
    def test_unmapped_property_is_skipped(self):
        from incident_bridge.services.artifacts import CustomPropertyType as T, CustomPropertyValue
        from incident_bridge.services.custom_fields import CustomFieldTranslator

        translator = CustomFieldTranslator([_prop(11, 1, T.TEXT, None)])
        self.assertEqual(translator.to_external([CustomPropertyValue(1, string_value="x")]), [])

    def test_non_numeric_field_key_is_skipped(self):
        from incident_bridge.services.artifacts import CustomPropertyType as T, CustomPropertyValue
        from incident_bridge.services.custom_fields import CustomFieldTranslator

        translator = CustomFieldTranslator([_prop(11, 1, T.TEXT, "cf_severity")])
        self.assertEqual(translator.to_external([CustomPropertyValue(1, string_value="x")]), [])

    def test_user_properties_are_not_synced(self):
        from incident_bridge.services.artifacts import CustomFieldValue, CustomPropertyType as T, CustomPropertyValue
        from incident_bridge.services.custom_fields import CustomFieldTranslator

        translator = CustomFieldTranslator([_prop(18, 8, T.USER, "108")])
        self.assertEqual(translator.to_external([CustomPropertyValue(8, integer_value=3)]), [])
        self.assertEqual(translator.to_internal([CustomFieldValue(108, "3")]), [])

    def test_multi_list_drops_unmapped_members(self):
        from incident_bridge.services.artifacts import CustomFieldValue, CustomPropertyValue

        translator = _translator()
        out = translator.to_external([CustomPropertyValue(7, integer_list_value=[600, 999])])
        self.assertEqual(out[0].value, ["Linux"])

        back = translator.to_internal([CustomFieldValue(107, ["Windows", "BeOS"], multiple=True)])
        self.assertEqual(back[0].integer_list_value, [601])

    def test_multi_list_with_no_mapped_members_sends_empty_list(self):
        from incident_bridge.services.artifacts import CustomPropertyValue

        out = _translator().to_external([CustomPropertyValue(7, integer_list_value=[998, 999])])
        self.assertEqual(len(out), 1)
        self.assertEqual(out[0].value, [])
        self.assertEqual(out[0].to_api(), {"id": 107, "value": []})

    def test_unmapped_list_value_is_not_sent(self):
        from incident_bridge.services.artifacts import CustomPropertyValue

        self.assertEqual(_translator().to_external([CustomPropertyValue(6, integer_value=999)]), [])

    def test_empty_external_value_clears_internal_value(self):
        from incident_bridge.services.artifacts import CustomFieldValue

        back = _translator().to_internal([CustomFieldValue(106, "")])
        self.assertEqual(len(back), 1)
        self.assertEqual(back[0].property_number, 6)
        self.assertIsNone(back[0].integer_value)

    def test_missing_external_field_is_only_a_warning(self):
        translator = _translator()
        self.assertEqual(translator.to_internal([]), [])

    def test_unparsable_values_are_skipped(self):
        from incident_bridge.services.artifacts import CustomFieldValue

        translator = _translator()
        out = translator.to_internal(
            [
                CustomFieldValue(102, "forty-two"),
                CustomFieldValue(103, "1,5"),
                CustomFieldValue(104, "maybe"),
                CustomFieldValue(105, "next tuesday"),
                CustomFieldValue(101, "kept"),
            ]
        )
        self.assertEqual([v.property_number for v in out], [1])
        self.assertEqual(out[0].string_value, "kept")

    def test_boolean_accepts_true_false_words(self):
        from incident_bridge.services.artifacts import CustomFieldValue

        out = _translator().to_internal([CustomFieldValue(104, "True")])
        self.assertIs(out[0].boolean_value, True)

    def test_apply_values_replaces_by_property_number(self):
        from incident_bridge.services.artifacts import CustomPropertyValue
        from incident_bridge.services.custom_fields import apply_custom_property_values

        current = [CustomPropertyValue(1, string_value="old"), CustomPropertyValue(2, integer_value=1)]
        merged = apply_custom_property_values(current, [CustomPropertyValue(1, string_value="new")])

        self.assertEqual([(v.property_number, v.string_value) for v in merged], [(1, "new"), (2, None)])
        self.assertEqual(merged[1].integer_value, 1)


if __name__ == "__main__":
    unittest.main()
