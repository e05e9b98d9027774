import struct
import unittest
from dataclasses import make_dataclass

import numpy as np

from zcopy_data_model.layout import Layout
from zcopy_data_model.mode import Mode
from zcopy_exception_model.exception import DeserializeError, VersionMismatchError, \
    IntegrityCheckFailureError, HandleReleasedError
from zcopy_io.engine.deserializer import deserialize
from zcopy_io.engine.serializer import serialize, serialize_to_bytes
from zcopy_io.engine.wire_format import HeaderLayout
from zcopy_io.file_io import deserialize_bytes
from zcopy_io.persistence.growable_sink import BufferTarget, GrowableSink
from zcopy_io.tests.test_helper import Record, EmptyRecord, Point, Sample, Shadowed, TreeNode, make_sample, \
    make_tree

ALL_MODES = (Mode.NONE, Mode.WITH_STATIC_VERSION, Mode.WITH_INTEGRITY, Mode.DEFAULT)


class TestHeaderLayout(unittest.TestCase):

    def test_sizes_per_mode(self):
        self.assertEqual(HeaderLayout.for_mode(Mode.NONE).size, 8)
        self.assertEqual(HeaderLayout.for_mode(Mode.WITH_STATIC_VERSION).size, 16)
        self.assertEqual(HeaderLayout.for_mode(Mode.WITH_INTEGRITY).size, 16)
        self.assertEqual(HeaderLayout.for_mode(Mode.DEFAULT).size, 24)

    def test_slot_order(self):
        header = HeaderLayout.for_mode(Mode.DEFAULT)
        self.assertEqual((header.version_pos, header.checksum_pos, header.root_pos), (0, 8, 16))


class TestRoundTrip(unittest.TestCase):

    def test_sample_round_trip_in_every_mode(self):
        sample = make_sample()
        for mode in ALL_MODES:
            with self.subTest(mode=mode):
                data = serialize_to_bytes(sample, mode)
                with deserialize_bytes(Sample, data, mode) as handle:
                    self.assertEqual(handle.get(), sample)

    def test_field_access(self):
        sample = make_sample(99)
        with deserialize_bytes(Sample, serialize_to_bytes(sample)) as handle:
            self.assertEqual(handle.id, 99)
            self.assertEqual(handle.label, "sample-é")
            self.assertIs(handle.active, True)
            self.assertEqual(handle.score, 0.25)
            self.assertEqual(handle.payload, b"\x00\x01binary\xff")
            self.assertEqual(handle.origin.x, 1.5)
            self.assertEqual(handle.parent.y, 4.0)
            self.assertEqual(list(handle.tags), ["alpha", "", "gamma"])
            self.assertEqual(handle.points[-1].x, 2.0)
            self.assertEqual(handle.counts[2], 2 ** 40)
            np.testing.assert_array_equal(handle.vector, np.array([0.1, 0.2, 0.3, 0.4], dtype=np.float32))

    def test_views_do_not_copy(self):
        with deserialize_bytes(Sample, serialize_to_bytes(make_sample())) as handle:
            self.assertIsInstance(handle.payload, memoryview)
            self.assertTrue(handle.payload.readonly)
            self.assertFalse(handle.vector.flags.writeable)
            self.assertFalse(handle.vector.flags.owndata)

    def test_materialize_builds_dataclass(self):
        sample = make_sample()
        with deserialize_bytes(Sample, serialize_to_bytes(sample)) as handle:
            copy = handle.materialize()
        self.assertIsInstance(copy, Sample)
        self.assertIsInstance(copy.payload, bytes)
        self.assertIsInstance(copy.points[0], Point)
        self.assertEqual(copy.tags, sample.tags)
        self.assertTrue(copy.vector.flags.owndata)
        np.testing.assert_array_equal(copy.vector, sample.vector)

    def test_optional_none_and_empty_collections(self):
        sample = Sample(id=1, label="", active=False, score=0.0, payload=b"", origin=Point())
        with deserialize_bytes(Sample, serialize_to_bytes(sample)) as handle:
            self.assertIsNone(handle.parent)
            self.assertEqual(len(handle.tags), 0)
            self.assertEqual(handle.vector.size, 0)
            self.assertEqual(handle.get(), sample)

    def test_default_record(self):
        with deserialize_bytes(Record, serialize_to_bytes(Record())) as handle:
            self.assertEqual(handle.get(), Record())

    def test_empty_schema(self):
        with deserialize_bytes(EmptyRecord, serialize_to_bytes(EmptyRecord())) as handle:
            self.assertEqual(handle.materialize(), EmptyRecord())

    def test_shared_records_are_written_once(self):
        tree = make_tree()
        with deserialize_bytes(TreeNode, serialize_to_bytes(tree)) as handle:
            self.assertEqual(handle.get(), tree)
            middle = handle.children[0]
            self.assertEqual(handle.next.offset, middle.offset)
            self.assertEqual(middle.next.offset, middle.children[1].offset)

    def test_list_view_slicing(self):
        with deserialize_bytes(Sample, serialize_to_bytes(make_sample())) as handle:
            self.assertEqual(handle.tags[1:], ["", "gamma"])
            with self.assertRaises(IndexError):
                handle.tags[3]

    def test_fields_shadowed_by_handle_attributes(self):
        obj = Shadowed(schema="s", offset=5, get=6, _hidden=7)
        with deserialize_bytes(Shadowed, serialize_to_bytes(obj)) as handle:
            self.assertEqual(handle["schema"], "s")
            self.assertEqual(handle["offset"], 5)
            self.assertEqual(handle["get"], 6)
            self.assertEqual(handle["_hidden"], 7)
            self.assertIs(handle.schema, Shadowed)
            self.assertEqual(handle.materialize(), obj)
            with self.assertRaises(KeyError):
                handle["missing"]

    def test_serialize_reports_size(self):
        target = BufferTarget()
        written = serialize(GrowableSink(target), Record(42, "a"))
        self.assertEqual(written, len(target.getvalue()))


class TestSerializeErrors(unittest.TestCase):

    def test_cycle_rejected(self):
        node = TreeNode(value=1)
        node.next = node
        with self.assertRaises(ValueError):
            serialize_to_bytes(node)

    def test_wrong_field_type(self):
        with self.assertRaises(TypeError):
            serialize_to_bytes(Record(id=1, name=5))

    def test_scalar_fields_reject_wrong_types(self):
        with self.assertRaises(TypeError):
            serialize_to_bytes(Record(id=1.7, name="float"))
        with self.assertRaises(TypeError):
            serialize_to_bytes(Record(id=True, name="bool"))
        sample = make_sample()
        sample.active = "yes"
        with self.assertRaises(TypeError):
            serialize_to_bytes(sample)
        sample = make_sample()
        sample.score = "0.5"
        with self.assertRaises(TypeError):
            serialize_to_bytes(sample)

    def test_scalar_fields_accept_numeric_types(self):
        sample = make_sample()
        sample.id = np.int32(11)
        sample.score = 3
        sample.active = np.bool_(False)
        with deserialize_bytes(Sample, serialize_to_bytes(sample)) as handle:
            self.assertEqual(handle.id, 11)
            self.assertEqual(handle.score, 3.0)
            self.assertIs(handle.active, False)

    def test_int_out_of_range(self):
        with self.assertRaises(ValueError):
            serialize_to_bytes(Record(id=2 ** 64, name="big"))

    def test_required_struct_cannot_be_none(self):
        sample = make_sample()
        sample.origin = None
        with self.assertRaises(ValueError):
            serialize_to_bytes(sample)

    def test_non_dataclass_rejected(self):
        with self.assertRaises(TypeError):
            serialize_to_bytes({"id": 1})

    def test_multidimensional_array_rejected(self):
        sample = make_sample()
        sample.vector = np.zeros((2, 2), dtype=np.float32)
        with self.assertRaises(ValueError):
            serialize_to_bytes(sample)


class TestDeserializeGuards(unittest.TestCase):

    def test_version_mismatch(self):
        data = serialize_to_bytes(Record(42, "a"))
        other = make_dataclass("Record", [("id", int), ("name", str), ("flag", bool)])
        with self.assertRaises(VersionMismatchError) as ctx:
            deserialize(other, data)
        self.assertEqual(ctx.exception.actual, Layout.of(Record).type_hash())

    def test_without_version_tag_layout_is_trusted(self):
        renamed = make_dataclass("Renamed", [("id", int), ("name", str)])
        data = serialize_to_bytes(Record(42, "a"), Mode.NONE)
        with deserialize_bytes(renamed, data, Mode.NONE) as handle:
            self.assertEqual(handle.id, 42)

    def test_checksum_algorithm_must_match(self):
        buffer = BufferTarget()
        serialize(GrowableSink(buffer), Record(1, "x"), checksum_algorithm="crc32")
        with self.assertRaises(VersionMismatchError):
            deserialize(Record, buffer.getvalue(), checksum_algorithm="sha256")
        self.assertEqual(deserialize(Record, buffer.getvalue(), checksum_algorithm="crc32").cls, Record)

    def test_integrity_detects_flipped_byte(self):
        data = bytearray(serialize_to_bytes(make_sample()))
        data[-1] ^= 0x01
        with self.assertRaises(IntegrityCheckFailureError):
            deserialize(Sample, bytes(data))

    def test_integrity_covers_root_offset(self):
        data = bytearray(serialize_to_bytes(Record(42, "a"), Mode.WITH_INTEGRITY))
        data[8] ^= 0x08
        with self.assertRaises(IntegrityCheckFailureError):
            deserialize(Record, bytes(data), Mode.WITH_INTEGRITY)

    def test_truncated_span(self):
        data = serialize_to_bytes(Record(42, "a"))
        with self.assertRaises(DeserializeError):
            deserialize(Record, data[:10])
        bare = serialize_to_bytes(Record(42, "a"), Mode.NONE)
        with self.assertRaises(DeserializeError):
            deserialize(Record, bare[:-1], Mode.NONE)

    def test_root_out_of_range(self):
        with self.assertRaises(DeserializeError):
            deserialize(Record, struct.pack('<Q', 1000), Mode.NONE)

    def test_forward_reference_rejected(self):
        # root record at 8 points at text stored after the record itself
        data = struct.pack('<QqQQ', 8, 42, 32, 1) + b"a"
        with self.assertRaises(DeserializeError):
            deserialize(Record, data, Mode.NONE)

    def test_invalid_utf8_reported_on_access(self):
        data = struct.pack('<Q', 16) + b"\xff" + b"\x00" * 7 + struct.pack('<qQQ', 1, 8, 1)
        with deserialize_bytes(Record, data, Mode.NONE) as handle:
            self.assertEqual(handle.id, 1)
            with self.assertRaises(DeserializeError):
                handle.name

    def test_failed_deserialize_returns_no_handle(self):
        handle = None
        with self.assertRaises(DeserializeError):
            handle = deserialize_bytes(Record, b"\x00" * 4)
        self.assertIsNone(handle)

    def test_released_handle_blocks_views(self):
        handle = deserialize_bytes(Sample, serialize_to_bytes(make_sample()))
        origin = handle.origin
        handle.release()
        with self.assertRaises(HandleReleasedError):
            handle.id
        with self.assertRaises(HandleReleasedError):
            origin.x


if __name__ == '__main__':
    unittest.main()
