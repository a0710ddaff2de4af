from unittest.mock import MagicMock, patch

import requests

from secretshare.services.random_secret import fetch_random_secret

URL = "https://secrets-api.example.com/random"


def test_returns_secret_text():
    resp = MagicMock()
    resp.json.return_value = {"id": 7, "secret": "I eat cereal with water.", "username": "x"}
    with patch("secretshare.services.random_secret.requests.get", return_value=resp) as get:
        assert fetch_random_secret(URL, timeout=2) == "I eat cereal with water."
    get.assert_called_once_with(URL, timeout=2)


def test_network_failure_yields_none():
    with patch("secretshare.services.random_secret.requests.get", side_effect=requests.Timeout("slow")):
        assert fetch_random_secret(URL) is None


def test_unexpected_payload_yields_none():
    resp = MagicMock()
    resp.json.return_value = ["nope"]
    with patch("secretshare.services.random_secret.requests.get", return_value=resp):
        assert fetch_random_secret(URL) is None


def test_disabled_when_url_is_empty():
    with patch("secretshare.services.random_secret.requests.get") as get:
        assert fetch_random_secret("") is None
    get.assert_not_called()
