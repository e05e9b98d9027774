import os
import unittest
from unittest.mock import patch

from pydantic import ValidationError

from zcopy_io.config import Settings, get_settings


class TestSettings(unittest.TestCase):

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            cfg = Settings()
        self.assertEqual(cfg.page_size, 4096)
        self.assertEqual(cfg.initial_capacity, 4096)
        self.assertEqual(cfg.checksum_algorithm, "sha256")
        self.assertTrue(cfg.lock_files)
        self.assertTrue(cfg.fsync_on_close)

    def test_environment_override(self):
        env = {"ZCOPY_PAGE_SIZE": "16384", "ZCOPY_CHECKSUM_ALGORITHM": "crc32", "ZCOPY_LOCK_FILES": "false"}
        with patch.dict(os.environ, env):
            cfg = Settings()
        self.assertEqual(cfg.page_size, 16384)
        self.assertEqual(cfg.checksum_algorithm, "crc32")
        self.assertFalse(cfg.lock_files)

    def test_non_positive_sizes_rejected(self):
        with self.assertRaises(ValidationError):
            Settings(page_size=0)
        with self.assertRaises(ValidationError):
            Settings(initial_capacity=-1)

    def test_get_settings_returns_shared_instance(self):
        self.assertIs(get_settings(), get_settings())


if __name__ == '__main__':
    unittest.main()
