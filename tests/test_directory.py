"""
Tests for the Google Workspace directory client against a mocked session.
"""

from unittest.mock import Mock

import google.auth.exceptions
import pytest

from idp_scim_sync.errors import ConfigurationError, DirectoryError, TransportError
from idp_scim_sync.services.directory import GoogleDirectoryClient


def _response(status_code, body=None):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = body or {}
    response.text = str(body or "")
    return response


@pytest.fixture
def session():
    return Mock()


@pytest.fixture
def client(session):
    return GoogleDirectoryClient(session, max_attempts=2, backoff_max=0, base_url="https://directory.example.com/v1")


class TestGoogleDirectoryClient:
    """Test class for GoogleDirectoryClient"""

    def test_list_groups_follows_page_tokens(self, client, session):
        session.request.side_effect = [
            _response(200, {"groups": [{"id": "g1"}], "nextPageToken": "next"}),
            _response(200, {"groups": [{"id": "g2"}]}),
        ]

        groups = client.list_groups("name:Admin*")

        assert [g["id"] for g in groups] == ["g1", "g2"]
        first, second = session.request.call_args_list
        assert first.args == ("GET", "https://directory.example.com/v1/groups")
        assert first.kwargs["params"]["query"] == "name:Admin*"
        assert first.kwargs["params"]["customer"] == "my_customer"
        assert "pageToken" not in first.kwargs["params"]
        assert second.kwargs["params"]["pageToken"] == "next"

    def test_list_group_members_includes_derived(self, client, session):
        session.request.return_value = _response(200, {"members": [{"id": "u1", "type": "USER"}]})

        assert client.list_group_members("g1") == [{"id": "u1", "type": "USER"}]
        params = session.request.call_args.kwargs["params"]
        assert params["includeDerivedMembership"] == "true"

    def test_missing_user_is_none(self, client, session):
        session.request.return_value = _response(404, {"error": {"message": "Resource Not Found"}})

        assert client.get_user("ghost") is None
        assert session.request.call_count == 1

    def test_rate_limit_is_retried(self, client, session):
        session.request.side_effect = [_response(429), _response(200, {"id": "u1", "primaryEmail": "a@example.com"})]

        assert client.get_user("u1")["id"] == "u1"
        assert session.request.call_count == 2

    def test_forbidden_is_raised(self, client, session):
        session.request.return_value = _response(403, {"error": "forbidden"})

        with pytest.raises(DirectoryError) as excinfo:
            client.get_user("u1")

        assert excinfo.value.status_code == 403

    def test_refresh_error_is_mapped(self, client, session):
        session.request.side_effect = google.auth.exceptions.RefreshError("unauthorized_client")

        with pytest.raises(DirectoryError) as excinfo:
            client.list_groups()

        assert excinfo.value.status_code == 401

    def test_auth_transport_error_is_mapped(self, client, session):
        session.request.side_effect = google.auth.exceptions.TransportError("dns")

        with pytest.raises(TransportError):
            client.list_groups()

    def test_invalid_service_account(self):
        with pytest.raises(ConfigurationError):
            GoogleDirectoryClient.from_service_account({"type": "service_account"}, user_email="admin@example.com")
