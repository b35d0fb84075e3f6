"""Tests for nerdgraph.NerdGraphClient."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from nerdgraph import NerdGraphClient, NerdGraphError, graphql_url


def _response(status=200, body=None, json_error=None):
    response = MagicMock()
    response.status_code = status
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status} Error")
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = body
    return response


def test_api_key_sent_as_header_not_in_body():
    client = NerdGraphClient("NRAK-SECRET")
    with patch.object(client._session, "post", return_value=_response(body={"data": {}})) as post:
        client.query("{ actor { user { name } } }")

    assert client._session.headers["API-Key"] == "NRAK-SECRET"
    args, kwargs = post.call_args
    assert args[0] == "https://api.newrelic.com/graphql"
    assert kwargs["json"] == {"query": "{ actor { user { name } } }", "variables": {}}
    assert "NRAK-SECRET" not in str(kwargs["json"])


def test_query_returns_raw_envelope_with_variables():
    body = {"data": {"actor": None}, "errors": [{"message": "nope"}]}
    client = NerdGraphClient("key")
    with patch.object(client._session, "post", return_value=_response(body=body)) as post:
        assert client.query("q", {"guid": "abc"}) == body
    assert post.call_args.kwargs["json"]["variables"] == {"guid": "abc"}


def test_http_error_raises_nerdgraph_error():
    client = NerdGraphClient("key")
    with patch.object(client._session, "post", return_value=_response(status=401)):
        with pytest.raises(NerdGraphError):
            client.query("q")


def test_connection_error_raises_nerdgraph_error():
    client = NerdGraphClient("key")
    with patch.object(client._session, "post", side_effect=requests.ConnectionError("down")):
        with pytest.raises(NerdGraphError) as excinfo:
            client.query("q")
    assert isinstance(excinfo.value.__cause__, requests.ConnectionError)


def test_malformed_json_raises_nerdgraph_error():
    client = NerdGraphClient("key")
    with patch.object(client._session, "post", return_value=_response(json_error=ValueError("bad json"))):
        with pytest.raises(NerdGraphError):
            client.query("q")


def test_missing_api_key_rejected():
    with pytest.raises(NerdGraphError):
        NerdGraphClient("")


def test_region_urls():
    assert graphql_url("us") == "https://api.newrelic.com/graphql"
    assert graphql_url(" EU ") == "https://api.eu.newrelic.com/graphql"
    assert NerdGraphClient("key", region="EU").url == "https://api.eu.newrelic.com/graphql"
    with pytest.raises(ValueError):
        graphql_url("APAC")
