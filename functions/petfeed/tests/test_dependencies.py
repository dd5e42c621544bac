import os
import shutil
import tempfile
import threading
import time
import unittest
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

from petfeed import dependencies
from petfeed.config import Settings
from petfeed.storage import InMemoryBlobStore, LocalBlobStore, S3BlobStore
from petfeed.store import JsonFilePostStore, SqlPostStore


class SettingsTests(unittest.TestCase):
    def test_defaults(self):
        settings = Settings(_env_file=None)
        self.assertEqual(settings.max_upload_bytes, 6 * 1024 * 1024)
        self.assertEqual(settings.cors_origins, ["*"])
        self.assertEqual(settings.resolved_posts_file, os.path.join("data", "posts.json"))

    def test_normalization(self):
        settings = Settings(
            _env_file=None,
            public_base_url="https://pets.example///",
            cors_origin=" https://a.example , ,https://b.example ",
            admin_token="  token  ",
            posts_file="/srv/posts.json",
        )
        self.assertEqual(settings.public_base_url, "https://pets.example")
        self.assertEqual(settings.cors_origins, ["https://a.example", "https://b.example"])
        self.assertEqual(settings.admin_token, "token")
        self.assertEqual(settings.resolved_posts_file, "/srv/posts.json")

    def test_reads_environment(self):
        env = {
            "MAX_UPLOAD_BYTES": "1024",
            "ADMIN_TOKEN": "abc",
            "PETFEED_USE_IN_MEMORY_BACKENDS": "true",
        }
        with patch.dict(os.environ, env):
            settings = Settings(_env_file=None)
        self.assertEqual(settings.max_upload_bytes, 1024)
        self.assertEqual(settings.admin_token, "abc")
        self.assertTrue(settings.use_in_memory_backends)


class BackendSelectionTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        dependencies.reset_clients()

    def tearDown(self):
        dependencies.reset_clients()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def _settings(self, **kwargs):
        kwargs.setdefault("data_dir", os.path.join(self.tmpdir, "data"))
        kwargs.setdefault("uploads_dir", os.path.join(self.tmpdir, "uploads"))
        return Settings(_env_file=None, **kwargs)

    def test_flat_file_and_local_uploads_by_default(self):
        with patch.object(dependencies, "get_settings", return_value=self._settings()):
            store = dependencies.get_post_store()
            blobs = dependencies.get_blob_store()
        self.assertIsInstance(store, JsonFilePostStore)
        self.assertEqual(store.path, os.path.join(self.tmpdir, "data", "posts.json"))
        self.assertIsInstance(blobs, LocalBlobStore)
        self.assertIs(dependencies.get_post_store(), store)

    def test_database_url_selects_sql_store(self):
        settings = self._settings(database_url="sqlite+pysqlite:///:memory:")
        with patch.object(dependencies, "get_settings", return_value=settings):
            store = dependencies.get_post_store()
        self.assertIsInstance(store, SqlPostStore)

    @patch("petfeed.storage.boto3.client")
    def test_bucket_selects_s3(self, mock_client):
        settings = self._settings(s3_bucket="pets", s3_region="eu-west-1")
        with patch.object(dependencies, "get_settings", return_value=settings):
            blobs = dependencies.get_blob_store()
        self.assertIsInstance(blobs, S3BlobStore)
        self.assertEqual(blobs.bucket, "pets")

    def test_concurrent_first_calls_share_one_store(self):
        built = []

        class SlowJsonFilePostStore(JsonFilePostStore):
            def __init__(self, *args, **kwargs):
                time.sleep(0.05)
                built.append(self)
                super().__init__(*args, **kwargs)

        barrier = threading.Barrier(8)

        def first_request(_):
            barrier.wait()
            return dependencies.get_post_store(), dependencies.get_blob_store()

        with patch.object(dependencies, "get_settings", return_value=self._settings()), \
                patch.object(dependencies, "JsonFilePostStore", SlowJsonFilePostStore), \
                ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(first_request, range(8)))

        self.assertEqual(len(built), 1)
        self.assertEqual(len({id(store) for store, _ in results}), 1)
        self.assertEqual(len({id(blobs) for _, blobs in results}), 1)

    def test_in_memory_toggle(self):
        settings = self._settings(use_in_memory_backends=True)
        with patch.object(dependencies, "get_settings", return_value=settings):
            store = dependencies.get_post_store()
            blobs = dependencies.get_blob_store()
        self.assertIsInstance(store, JsonFilePostStore)
        self.assertIsInstance(blobs, InMemoryBlobStore)


if __name__ == "__main__":
    unittest.main()
