"""
Firebase Admin / Firestore client construction. SDK entry points are mocked;
nothing here talks to Google.
"""

import json
from dataclasses import replace
from unittest.mock import MagicMock

import pytest
from google.auth.credentials import AnonymousCredentials

from session_bootstrap import firebase_client

SA_INFO = {"type": "service_account", "project_id": "expo-prod", "client_email": "sa@expo-prod.iam"}


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "FIREBASE_ADMIN_JSON",
        "FIREBASE_ADMIN_FILE",
        "GOOGLE_APPLICATION_CREDENTIALS",
        *firebase_client.EMULATOR_ENV_VARS,
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(firebase_client, "_FIREBASE_APP", None)
    monkeypatch.setattr(firebase_client, "_FIRESTORE_CLIENT", None)


@pytest.fixture
def sdk(monkeypatch):
    mocks = MagicMock()
    monkeypatch.setattr(firebase_client.firebase_admin, "initialize_app", mocks.initialize_app)
    monkeypatch.setattr(firebase_client.firebase_admin, "delete_app", mocks.delete_app)
    monkeypatch.setattr(firebase_client.credentials, "Certificate", mocks.Certificate)
    monkeypatch.setattr(firebase_client.credentials, "ApplicationDefault", mocks.ApplicationDefault)
    monkeypatch.setattr(
        firebase_client.service_account.Credentials, "from_service_account_info", mocks.from_service_account_info
    )
    monkeypatch.setattr(firebase_client.firestore, "Client", mocks.Client)
    return mocks


@pytest.fixture
def no_project(settings):
    return replace(settings, google_project_id=None)


class TestFirebaseApp:
    def test_inline_service_account(self, sdk, no_project, monkeypatch):
        monkeypatch.setenv("FIREBASE_ADMIN_JSON", json.dumps(SA_INFO))

        app = firebase_client.get_firebase_app(no_project)

        assert app is sdk.initialize_app.return_value
        sdk.Certificate.assert_called_once_with(SA_INFO)
        sdk.initialize_app.assert_called_once_with(sdk.Certificate.return_value, {"projectId": "expo-prod"})

    def test_key_file(self, sdk, no_project, monkeypatch, tmp_path):
        key = tmp_path / "sa.json"
        key.write_text(json.dumps(SA_INFO))
        monkeypatch.setenv("FIREBASE_ADMIN_FILE", str(key))

        firebase_client.get_firebase_app(no_project)

        sdk.Certificate.assert_called_once_with(SA_INFO)

    def test_settings_project_overrides_key_project(self, sdk, settings, monkeypatch):
        monkeypatch.setenv("FIREBASE_ADMIN_JSON", json.dumps(SA_INFO))

        firebase_client.get_firebase_app(replace(settings, google_project_id="expo-staging"))

        assert sdk.initialize_app.call_args[0][1] == {"projectId": "expo-staging"}

    def test_emulator_needs_no_credentials(self, sdk, settings, monkeypatch):
        monkeypatch.setenv("FIREBASE_AUTH_EMULATOR_HOST", "localhost:9099")

        firebase_client.get_firebase_app(replace(settings, google_project_id="demo-expo"))

        sdk.initialize_app.assert_called_once_with(None, {"projectId": "demo-expo"})
        sdk.Certificate.assert_not_called()

    def test_emulator_without_project_is_refused(self, sdk, no_project, monkeypatch):
        monkeypatch.setenv("FIREBASE_AUTH_EMULATOR_HOST", "localhost:9099")

        with pytest.raises(RuntimeError):
            firebase_client.get_firebase_app(no_project)

    def test_application_default_credentials(self, sdk, no_project):
        firebase_client.get_firebase_app(no_project)

        sdk.initialize_app.assert_called_once_with(sdk.ApplicationDefault.return_value, None)

    def test_app_is_cached_until_reset(self, sdk, no_project):
        first = firebase_client.get_firebase_app(no_project)
        assert firebase_client.get_firebase_app(no_project) is first
        assert sdk.initialize_app.call_count == 1

        firebase_client.reset_clients()

        sdk.delete_app.assert_called_once_with(first)
        firebase_client.get_firebase_app(no_project)
        assert sdk.initialize_app.call_count == 2


class TestFirestore:
    def test_service_account_client(self, sdk, no_project, monkeypatch):
        monkeypatch.setenv("FIREBASE_ADMIN_JSON", json.dumps(SA_INFO))

        client = firebase_client.get_firestore(no_project)

        assert client is sdk.Client.return_value
        sdk.Client.assert_called_once_with(project="expo-prod", credentials=sdk.from_service_account_info.return_value)

    def test_emulator_client_is_anonymous(self, sdk, settings, monkeypatch):
        monkeypatch.setenv("FIRESTORE_EMULATOR_HOST", "localhost:8080")

        firebase_client.get_firestore(replace(settings, google_project_id="demo-expo"))

        kwargs = sdk.Client.call_args.kwargs
        assert kwargs["project"] == "demo-expo"
        assert isinstance(kwargs["credentials"], AnonymousCredentials)

    def test_default_client(self, sdk, settings):
        firebase_client.get_firestore(replace(settings, google_project_id="expo-prod"))

        sdk.Client.assert_called_once_with(project="expo-prod")
