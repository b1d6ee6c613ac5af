import unittest
from datetime import date, datetime

from services.importer import (
    generate_train_number,
    map_train_type,
    parse_date,
    parse_running_days,
    parse_schedule_fields,
    parse_timestamp,
    read_csv_rows,
)


class TestParsing(unittest.TestCase):
    def test_timestamp_offset_converted_to_utc(self):
        self.assertEqual(
            parse_timestamp("2024-03-04T10:00:00+02:00"), datetime(2024, 3, 4, 8, 0)
        )

    def test_timestamp_blank(self):
        self.assertIsNone(parse_timestamp("  "))

    def test_timestamp_garbage(self):
        with self.assertRaises(ValueError):
            parse_timestamp("not a time")

    def test_date(self):
        self.assertEqual(parse_date("2024-03-04"), date(2024, 3, 4))
        self.assertEqual(parse_date(datetime(2024, 3, 4, 9)), date(2024, 3, 4))

    def test_running_days_mask(self):
        self.assertEqual(parse_running_days("1111100"), [True] * 5 + [False] * 2)

    def test_running_days_sunday_first_mask(self):
        self.assertEqual(
            parse_running_days("1000000", sunday_first=True), [False] * 6 + [True]
        )

    def test_running_days_names(self):
        self.assertEqual(
            parse_running_days("Mon, Wed, Friday"),
            [True, False, True, False, True, False, False],
        )

    def test_running_days_short_list_passes_through(self):
        self.assertEqual(parse_running_days([True, False]), [True, False])

    def test_running_days_garbage(self):
        with self.assertRaises(ValueError):
            parse_running_days("sometimes")


class TestScheduleFields(unittest.TestCase):
    def test_camel_case_body(self):
        fields, errors = parse_schedule_fields({
            "trainId": "3",
            "departureLocationId": 1,
            "arrivalLocationId": 2,
            "scheduledDeparture": "2024-03-04T08:00:00",
            "scheduledArrival": "2024-03-04T12:00:00",
            "effectiveStartDate": "2024-03-01",
            "isCancelled": "false",
        })
        self.assertEqual(errors, [])
        self.assertEqual(fields["train_id"], 3)
        self.assertEqual(fields["scheduled_departure"], datetime(2024, 3, 4, 8, 0))
        self.assertEqual(fields["effective_start_date"], date(2024, 3, 1))
        self.assertFalse(fields["is_cancelled"])
        self.assertEqual(fields["running_days"], [True] * 7)
        self.assertEqual(fields["important_stations"], [])

    def test_bad_values_reported(self):
        fields, errors = parse_schedule_fields({
            "train_id": "abc",
            "scheduled_departure": "never",
        })
        self.assertEqual({v.field for v in errors}, {"train_id", "scheduled_departure"})
        self.assertNotIn("train_id", fields)

    def test_partial_only_returns_given_keys(self):
        fields, errors = parse_schedule_fields({"remarks": "  late crew  "}, partial=True)
        self.assertEqual(errors, [])
        self.assertEqual(fields, {"remarks": "late crew"})

    def test_important_stations_normalized(self):
        fields, _ = parse_schedule_fields({
            "importantStations": [{"locationId": "4", "arrivalTime": "09:00"}],
        })
        self.assertEqual(
            fields["important_stations"],
            [{"location_id": 4, "arrival_time": "09:00", "departure_time": None}],
        )

    def test_important_stations_from_csv_cell(self):
        fields, _ = parse_schedule_fields({"important_stations": '[{"location_id": 4}]'})
        self.assertEqual(
            fields["important_stations"],
            [{"location_id": 4, "arrival_time": None, "departure_time": None}],
        )


class TestTrainTypes(unittest.TestCase):
    def test_exact_and_alias(self):
        self.assertEqual(map_train_type("Local"), "local")
        self.assertEqual(map_train_type("SF"), "superfast")

    def test_single_partial_match(self):
        self.assertEqual(map_train_type("super"), "superfast")

    def test_ambiguous(self):
        with self.assertRaises(ValueError) as ctx:
            map_train_type("superfast express")
        self.assertIn("Ambiguous", str(ctx.exception))

    def test_unsupported(self):
        with self.assertRaises(ValueError) as ctx:
            map_train_type("zeppelin")
        self.assertIn("Unsupported", str(ctx.exception))

    def test_generated_number(self):
        self.assertEqual(
            generate_train_number("express", 7, date(2024, 3, 4)), "EXP20240304007"
        )


class TestCsv(unittest.TestCase):
    def test_blank_cells_become_none(self):
        rows = read_csv_rows("train_number,departure_code,remarks\n12001, NDLS ,\n")
        self.assertEqual(rows, [{"train_number": "12001", "departure_code": "NDLS", "remarks": None}])


if __name__ == "__main__":
    unittest.main()
