import unittest

from main import Settings, load_settings, process_uploaded_file
from threatfeed.errors import InvalidEventError


class TestLoadSettings(unittest.TestCase):
    def test_defaults(self):
        self.assertEqual(load_settings({}), Settings())

    def test_reads_environment(self):
        s = load_settings(
            {
                "PG_DSN": "postgresql://u:p@db:5432/intel",
                "PG_POOL_MAX": "8",
                "PG_POOL_TIMEOUT": "2.5",
                "INGEST_CHUNK_SIZE": "250",
                "BLOB_BACKEND": " Local ",
                "BLOB_LOCAL_ROOT": "/srv/blobs",
                "LOG_LEVEL": "debug",
            }
        )
        self.assertEqual(s.pg_dsn, "postgresql://u:p@db:5432/intel")
        self.assertEqual((s.pool_max, s.pool_timeout, s.chunk_size), (8, 2.5, 250))
        self.assertEqual((s.blob_backend, s.blob_local_root, s.log_level), ("local", "/srv/blobs", "DEBUG"))

    def test_invalid_numbers_raise(self):
        for env in ({"INGEST_CHUNK_SIZE": "0"}, {"PG_POOL_MAX": "many"}, {"PG_POOL_TIMEOUT": "soon"}):
            with self.assertRaises(ValueError):
                load_settings(env)


class TestUploadHandler(unittest.TestCase):
    def test_invalid_event_rejected_before_any_io(self):
        with self.assertRaises(InvalidEventError):
            process_uploaded_file({"bucket": "feeds"})


if __name__ == "__main__":
    unittest.main()
