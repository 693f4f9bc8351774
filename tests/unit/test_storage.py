"""Attachment storage backends and the startup selection policy."""

import base64
import io
import os
import stat
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, NoRegionError

from casedesk.app import storage as storage_module
from casedesk.app.config import Settings
from casedesk.app.exceptions import StorageInitializationError
from casedesk.app.storage import (
    LocalStorage,
    S3Storage,
    StorageObjectNotFoundError,
    init_storage,
    materialize_cloud_credentials,
)

CREDENTIALS = (
    "[default]\n"
    "aws_access_key_id = AKIAEXAMPLEKEY\n"
    "aws_secret_access_key = example-secret\n"
)


def _b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def _settings(tmp_path: Path, **overrides) -> Settings:
    values = {
        "USE_LOCAL_STORAGE": False,
        "FALLBACK_TO_LOCAL": False,
        "STORAGE_CREDENTIALS_B64": None,
        "LOCAL_STORAGE_DIR": str(tmp_path / "uploads"),
        "S3_BUCKET": "casedesk-test",
        "S3_REGION": "eu-central-1",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def credentials_env(monkeypatch):
    """Restore AWS_SHARED_CREDENTIALS_FILE after the test rewrites it."""
    monkeypatch.setenv("AWS_SHARED_CREDENTIALS_FILE", "unset")
    yield
    path = os.environ.get("AWS_SHARED_CREDENTIALS_FILE")
    if path and path != "unset" and os.path.exists(path):
        os.remove(path)


class TestLocalStorage(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.storage = LocalStorage(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def test_put_get_delete(self):
        location = self.storage.put("requests/1/sad.pdf", b"%PDF-1.7")

        self.assertTrue(location.endswith(os.path.join("requests", "1", "sad.pdf")))
        self.assertEqual(self.storage.get("requests/1/sad.pdf"), b"%PDF-1.7")

        self.storage.delete("requests/1/sad.pdf")
        self.storage.delete("requests/1/sad.pdf")
        with self.assertRaises(StorageObjectNotFoundError):
            self.storage.get("requests/1/sad.pdf")

    def test_keys_cannot_escape_base_dir(self):
        for key in ("../outside.txt", "requests/../../outside.txt", ""):
            with self.subTest(key=key):
                with self.assertRaises(ValueError):
                    self.storage.put(key, b"x")

    def test_leading_slash_stays_inside(self):
        location = self.storage.put("/abs.txt", b"x")
        self.assertTrue(Path(location).is_relative_to(Path(self._tmp.name).resolve()))


class TestS3Storage(unittest.TestCase):
    def setUp(self):
        self.client = MagicMock()
        self.storage = S3Storage(
            bucket="casedesk-test",
            region="eu-central-1",
            local_dir="unused",
            client=self.client,
        )

    def test_put_returns_object_url(self):
        url = self.storage.put("a/b.pdf", b"data", content_type="application/pdf")

        self.assertEqual(
            url, "https://casedesk-test.s3.eu-central-1.amazonaws.com/a/b.pdf"
        )
        self.client.put_object.assert_called_once_with(
            Bucket="casedesk-test",
            Key="a/b.pdf",
            Body=b"data",
            ContentType="application/pdf",
        )
        self.assertEqual(self.storage.name, "s3")
        self.assertFalse(self.storage.using_fallback)

    def test_custom_endpoint_url(self):
        storage = S3Storage(
            "casedesk-test", "us-east-1", "unused", endpoint_url="minio:9000", client=self.client
        )
        self.assertEqual(storage.object_url("k"), "http://minio:9000/casedesk-test/k")

    def test_get_reads_body(self):
        self.client.get_object.return_value = {"Body": io.BytesIO(b"blob")}
        self.assertEqual(self.storage.get("k"), b"blob")

    def test_missing_object(self):
        self.client.get_object.side_effect = _client_error("NoSuchKey", "GetObject")
        with self.assertRaises(StorageObjectNotFoundError):
            self.storage.get("k")

    def test_other_client_errors_propagate(self):
        self.client.get_object.side_effect = _client_error("AccessDenied", "GetObject")
        with self.assertRaises(ClientError):
            self.storage.get("k")

    def test_delete_ignores_missing(self):
        self.client.delete_object.side_effect = _client_error("404", "DeleteObject")
        self.storage.delete("k")

        self.client.delete_object.side_effect = _client_error("AccessDenied", "DeleteObject")
        with self.assertRaises(ClientError):
            self.storage.delete("k")

    def test_url_for_presigns(self):
        self.client.generate_presigned_url.return_value = "https://signed"
        self.assertEqual(self.storage.url_for("k", expires=60), "https://signed")
        self.client.generate_presigned_url.assert_called_once_with(
            "get_object",
            Params={"Bucket": "casedesk-test", "Key": "k"},
            ExpiresIn=60,
            HttpMethod="GET",
        )


def test_s3_client_failure_falls_back_to_local(tmp_path):
    with patch.object(S3Storage, "_build_client", side_effect=NoRegionError()):
        storage = S3Storage("casedesk-test", "eu-central-1", tmp_path / "fallback")

    assert storage.using_fallback
    assert storage.name == "local"
    storage.put("k.txt", b"kept locally")
    assert (tmp_path / "fallback" / "k.txt").read_bytes() == b"kept locally"
    assert storage.get("k.txt") == b"kept locally"


def test_local_flag_never_touches_credentials(tmp_path):
    settings = _settings(tmp_path, USE_LOCAL_STORAGE=True, STORAGE_CREDENTIALS_B64="junk")

    with patch.object(storage_module, "materialize_cloud_credentials") as materialize:
        backend = init_storage(settings)

    materialize.assert_not_called()
    assert isinstance(backend, LocalStorage)
    assert backend.name == "local"


def test_bad_credentials_fall_back_when_allowed(tmp_path):
    settings = _settings(tmp_path, FALLBACK_TO_LOCAL=True, STORAGE_CREDENTIALS_B64="%%%")

    backend = init_storage(settings)

    assert isinstance(backend, LocalStorage)


def test_missing_credentials_are_fatal_without_fallback(tmp_path):
    settings = _settings(tmp_path)

    with pytest.raises(StorageInitializationError):
        init_storage(settings)


@pytest.mark.parametrize(
    "encoded",
    [
        "%%%not-base64%%%",
        _b64("just some text"),
        _b64("[default]\nregion = us-east-1\n"),
    ],
)
def test_rejects_unusable_credentials(tmp_path, encoded):
    with pytest.raises(StorageInitializationError):
        materialize_cloud_credentials(_settings(tmp_path, STORAGE_CREDENTIALS_B64=encoded))


def test_materialized_credentials_are_private(tmp_path, credentials_env):
    path = materialize_cloud_credentials(
        _settings(tmp_path, STORAGE_CREDENTIALS_B64=_b64(CREDENTIALS))
    )

    assert os.environ["AWS_SHARED_CREDENTIALS_FILE"] == str(path)
    assert path.read_text(encoding="utf-8") == CREDENTIALS
    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_valid_credentials_select_s3(tmp_path, credentials_env):
    settings = _settings(tmp_path, STORAGE_CREDENTIALS_B64=_b64(CREDENTIALS))

    backend = init_storage(settings)

    assert isinstance(backend, S3Storage)
    assert backend.name == "s3"
    assert backend.bucket == "casedesk-test"


def test_unwritable_credentials_file_is_an_initialization_error(tmp_path, monkeypatch):
    monkeypatch.setattr(tempfile, "tempdir", str(tmp_path / "does-not-exist"))
    settings = _settings(tmp_path, STORAGE_CREDENTIALS_B64=_b64(CREDENTIALS))

    with pytest.raises(StorageInitializationError):
        materialize_cloud_credentials(settings)


def test_unwritable_credentials_file_falls_back_when_allowed(tmp_path, monkeypatch, credentials_env):
    monkeypatch.setattr(tempfile, "tempdir", str(tmp_path / "does-not-exist"))
    settings = _settings(
        tmp_path, FALLBACK_TO_LOCAL=True, STORAGE_CREDENTIALS_B64=_b64(CREDENTIALS)
    )

    backend = init_storage(settings)

    assert isinstance(backend, LocalStorage)
    assert os.environ["AWS_SHARED_CREDENTIALS_FILE"] == "unset"


def test_partial_credentials_file_is_removed(tmp_path, monkeypatch):
    monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))

    def refuse_chmod(path, mode):
        raise PermissionError(path)

    monkeypatch.setattr(storage_module.os, "chmod", refuse_chmod)

    with pytest.raises(StorageInitializationError):
        materialize_cloud_credentials(
            _settings(tmp_path, STORAGE_CREDENTIALS_B64=_b64(CREDENTIALS))
        )
    assert list(tmp_path.glob("casedesk-credentials-*")) == []


def test_close_removes_credentials_file(tmp_path, credentials_env):
    backend = init_storage(_settings(tmp_path, STORAGE_CREDENTIALS_B64=_b64(CREDENTIALS)))
    path = backend.credentials_file
    assert path is not None and path.exists()

    backend.close()
    backend.close()

    assert not path.exists()
