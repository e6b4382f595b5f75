"""
Tests for the tunneling client
"""

import json
from typing import List, Tuple

import pytest

from config import ENVELOPE_OPTION_KEYS
from oproxy.cancel import CancellationToken, RequestAborted, TransportError
from oproxy.connection import TransportRequest
from oproxy.response import HTTPResponse, make_headers
from oproxy.tunnel import (
    ConfigurationError,
    MissingSideChannelError,
    RequestOptions,
    TunnelClient,
    TunnelResponse,
    build_envelope,
)

RELAY = "https://relay.example.com/proxy"
TARGET = "https://api.example.com/items?page=2"


class RecordingTransport:
    """Fake transport that records calls and returns a canned reply"""

    def __init__(self, reply: HTTPResponse = None, error: Exception = None):
        self.reply = reply or HTTPResponse(status=200, status_text="OK", body="relay body")
        self.error = error
        self.calls: List[Tuple[str, TransportRequest]] = []

    def __call__(self, url: str, request: TransportRequest) -> HTTPResponse:
        self.calls.append((url, request))
        if self.error is not None:
            raise self.error
        return self.reply

    @property
    def last_request(self) -> TransportRequest:
        return self.calls[-1][1]


class TargetURL:
    """Stand-in for a URL object"""

    def __init__(self, url: str):
        self.url = url

    def __str__(self):
        return self.url


def reply(status=200, headers=None, body="relay body") -> HTTPResponse:
    return HTTPResponse(status=status, status_text="OK", headers=make_headers(headers), body=body)


class TestConstruction:
    """Relay endpoint validation"""

    def test_blank_endpoint_rejected(self):
        """An empty relay endpoint fails at construction"""
        transport = RecordingTransport()

        with pytest.raises(ConfigurationError):
            TunnelClient("", transport=transport)

        assert transport.calls == []

    def test_configuration_error_is_value_error(self):
        assert issubclass(ConfigurationError, ValueError)

    def test_url_object_endpoint(self):
        """A URL-like relay endpoint is stringified"""
        client = TunnelClient(TargetURL(RELAY), transport=RecordingTransport())

        assert client.relay_endpoint == RELAY


class TestEnvelope:
    """Envelope construction"""

    def test_unset_options_omitted(self):
        """Only method is defaulted; everything else unset is left out"""
        envelope = build_envelope(TARGET, RequestOptions())

        assert envelope["endpoint"] == TARGET
        assert json.loads(envelope["oproxy-options"]) == {"method": "GET"}
        assert envelope["headers"] == "{}"

    def test_all_options_serialized(self):
        """Every recognized option is carried to the relay"""
        options = RequestOptions(
            method="POST",
            mode="cors",
            credentials="include",
            redirect="follow",
            referrer="https://app.example.com/",
            referrer_policy="no-referrer",
            integrity="sha256-abc",
            keepalive=True,
        )

        relay_options = json.loads(build_envelope(TARGET, options)["oproxy-options"])

        assert relay_options == {
            "method": "POST",
            "mode": "cors",
            "credentials": "include",
            "redirect": "follow",
            "referrer": "https://app.example.com/",
            "referrerPolicy": "no-referrer",
            "integrity": "sha256-abc",
            "keepalive": True,
        }

    def test_explicit_falsy_values_kept(self):
        """Explicitly empty values are distinguishable from unset ones"""
        options = RequestOptions(referrer="", keepalive=False)

        relay_options = json.loads(build_envelope(TARGET, options)["oproxy-options"])

        assert relay_options == {"method": "GET", "referrer": "", "keepalive": False}

    def test_option_key_order(self):
        """Options are serialized in the relay's documented key order"""
        options = RequestOptions(
            keepalive=True,
            referrer_policy="origin",
            mode="no-cors",
            method="PUT",
        )

        relay_options = json.loads(build_envelope(TARGET, options)["oproxy-options"])

        assert list(relay_options) == ["method", "mode", "referrerPolicy", "keepalive"]
        assert [key for key in ENVELOPE_OPTION_KEYS if key in relay_options] == list(relay_options)

    def test_headers_serialized(self):
        """Caller headers travel as a JSON object"""
        options = RequestOptions(headers={"Authorization": "Bearer x", "Accept": "application/json"})

        headers = json.loads(build_envelope(TARGET, options)["headers"])

        assert headers == {"Authorization": "Bearer x", "Accept": "application/json"}

    def test_repeated_headers_joined(self):
        """Repeated header names fold into one comma-joined value"""
        options = RequestOptions(headers=[("Accept", "text/html"), ("accept", "application/json")])

        headers = json.loads(build_envelope(TARGET, options)["headers"])

        assert headers == {"Accept": "text/html, application/json"}

    def test_url_object_endpoint(self):
        """A URL-like target is carried as a plain string"""
        envelope = build_envelope(TargetURL(TARGET), RequestOptions())

        assert envelope["endpoint"] == TARGET


class TestTransportCall:
    """What the client sends to the relay"""

    @pytest.fixture
    def transport(self):
        return RecordingTransport()

    @pytest.fixture
    def client(self, transport):
        return TunnelClient(RELAY, transport=transport)

    def test_sent_to_relay(self, client, transport):
        """The physical call always targets the relay endpoint"""
        client.fetch(TARGET)

        url, request = transport.calls[0]
        assert url == RELAY
        assert request.headers["endpoint"] == TARGET

    def test_method_defaults_to_get(self, client, transport):
        """Local call and envelope agree on the default method"""
        client.fetch(TARGET)

        request = transport.last_request
        assert request.method == "GET"
        assert json.loads(request.headers["oproxy-options"])["method"] == "GET"

    def test_method_forwarded(self, client, transport):
        """An explicit method is used for both hops"""
        client.fetch(TARGET, method="DELETE")

        request = transport.last_request
        assert request.method == "DELETE"
        assert json.loads(request.headers["oproxy-options"])["method"] == "DELETE"

    @pytest.mark.parametrize("redirect", [None, "follow", "error", "manual"])
    def test_local_redirect_always_manual(self, client, transport, redirect):
        """The relay hop never follows redirects"""
        client.fetch(TARGET, redirect=redirect)

        request = transport.last_request
        assert request.redirect == "manual"

    def test_caller_redirect_goes_in_envelope(self, client, transport):
        """The target redirect policy is for the relay to honour"""
        client.fetch(TARGET, redirect="follow")

        assert json.loads(transport.last_request.headers["oproxy-options"])["redirect"] == "follow"

    def test_local_hop_options_forwarded(self, client, transport):
        """body, mode, keepalive, signal and credentials go to the relay hop"""
        signal = CancellationToken()

        client.fetch(
            TARGET,
            body=b"payload",
            mode="cors",
            keepalive=True,
            signal=signal,
            credentials="omit",
        )

        request = transport.last_request
        assert request.body == b"payload"
        assert request.mode == "cors"
        assert request.keepalive is True
        assert request.signal is signal
        assert request.credentials == "omit"

    def test_unset_local_options_stay_unset(self, client, transport):
        """Nothing but method is defaulted on the local call"""
        client.fetch(TARGET)

        request = transport.last_request
        assert request.body is None
        assert request.mode is None
        assert request.keepalive is None
        assert request.signal is None
        assert request.credentials is None

    def test_options_object_and_kwargs(self, client, transport):
        """Keyword arguments override a RequestOptions instance"""
        client.fetch(TARGET, RequestOptions(method="PUT", mode="cors"), mode="no-cors")

        request = transport.last_request
        assert request.method == "PUT"
        assert request.mode == "no-cors"

    def test_fresh_envelope_per_call(self, client, transport):
        """Envelopes are never reused between calls"""
        client.fetch(TARGET, headers={"X-Call": "1"})
        client.fetch(TARGET)

        first, second = transport.calls[0][1], transport.calls[1][1]
        assert first.headers is not second.headers
        assert second.headers["headers"] == "{}"


class TestSideChannel:
    """Relay reply decoding"""

    def test_incoming_headers_replace_headers(self):
        """Decoded incomingHeaders become the response headers"""
        target_headers = {"Content-Type": "application/json", "Set-Cookie": ["a=1", "b=2"]}
        transport = RecordingTransport(reply(headers={
            "incomingHeaders": json.dumps(target_headers),
            "X-RateLimit-Remaining": "41",
        }))

        response = TunnelClient(RELAY, transport=transport).fetch(TARGET)

        assert list(response.headers.items()) == [
            ("Content-Type", "application/json"),
            ("Set-Cookie", "a=1"),
            ("Set-Cookie", "b=2"),
        ]
        assert "X-RateLimit-Remaining" not in response.headers
        assert response.headers_overridden

    def test_proxy_headers_preserved(self):
        """The relay's physical headers stay inspectable"""
        physical = {"incomingHeaders": '{"X-Target": "yes"}', "X-RateLimit-Remaining": "41"}
        transport = RecordingTransport(reply(headers=physical))

        response = TunnelClient(RELAY, transport=transport).fetch(TARGET)

        assert response.proxy_headers == make_headers(physical)
        assert response.proxy_headers["x-ratelimit-remaining"] == "41"

    def test_incoming_headers_as_pairs(self):
        """A list of pairs is accepted as well"""
        transport = RecordingTransport(reply(headers={
            "incomingHeaders": json.dumps([["X-A", "1"], ["X-A", "2"]]),
        }))

        response = TunnelClient(RELAY, transport=transport).fetch(TARGET)

        assert response.get_all_headers("x-a") == ["1", "2"]

    def test_side_channel_names_case_insensitive(self):
        """Transports may lower-case header names"""
        transport = RecordingTransport(reply(status=200, headers={
            "incomingheaders": '{"X-Target": "yes"}',
            "receivedstatus": "418",
        }))

        response = TunnelClient(RELAY, transport=transport).fetch(TARGET)

        assert response.status == 418
        assert response.get_header("X-Target") == "yes"

    def test_no_incoming_headers_keeps_physical(self):
        """Without incomingHeaders the physical headers are used"""
        physical = {"Content-Type": "text/plain", "X-Relay": "1"}
        transport = RecordingTransport(reply(headers=physical))

        response = TunnelClient(RELAY, transport=transport).fetch(TARGET)

        assert response.headers == make_headers(physical)
        assert not response.headers_overridden

    def test_null_incoming_headers_keeps_physical(self):
        """A JSON null in incomingHeaders is not an override"""
        physical = {"incomingHeaders": "null", "X-Relay": "1"}
        transport = RecordingTransport(reply(headers=physical))

        response = TunnelClient(RELAY, transport=transport).fetch(TARGET)

        assert response.headers == make_headers(physical)
        assert response.get_header("X-Relay") == "1"
        assert not response.headers_overridden

    def test_received_status_replaces_status(self):
        """The target status wins over the relay's transport status"""
        transport = RecordingTransport(reply(status=200, headers={"receivedStatus": "404"}))

        response = TunnelClient(RELAY, transport=transport).fetch(TARGET)

        assert response.status == 404
        assert response.proxy_status == 200
        assert response.is_error
        assert response.status_overridden

    def test_no_received_status_keeps_physical(self):
        """Without receivedStatus the relay's status is used"""
        transport = RecordingTransport(reply(status=502))

        response = TunnelClient(RELAY, transport=transport).fetch(TARGET)

        assert response.status == 502
        assert not response.tunneled

    @pytest.mark.parametrize("value", ["0", "-5", " 0 "])
    def test_non_positive_received_status_rejected(self, value: str):
        """receivedStatus must decode to a positive status code"""
        transport = RecordingTransport(reply(status=200, headers={"receivedStatus": value}))

        with pytest.raises(ValueError):
            TunnelClient(RELAY, transport=transport).fetch(TARGET)

    def test_body_passed_through(self):
        transport = RecordingTransport(reply(body=b"\x89PNG"))

        response = TunnelClient(RELAY, transport=transport).fetch(TARGET)

        assert response.body == b"\x89PNG"

    def test_response_type(self):
        """Callers get a regular HTTP response"""
        response = TunnelClient(RELAY, transport=RecordingTransport()).fetch(TARGET)

        assert isinstance(response, TunnelResponse)
        assert isinstance(response, HTTPResponse)

    def test_response_not_hashable(self):
        response = TunnelClient(RELAY, transport=RecordingTransport()).fetch(TARGET)

        with pytest.raises(TypeError):
            hash(response)

    def test_malformed_incoming_headers_propagate(self):
        """Non-JSON incomingHeaders is a decode error"""
        transport = RecordingTransport(reply(headers={"incomingHeaders": "not json"}))

        with pytest.raises(json.JSONDecodeError):
            TunnelClient(RELAY, transport=transport).fetch(TARGET)

    def test_non_numeric_status_propagates(self):
        """Non-numeric receivedStatus is a decode error"""
        transport = RecordingTransport(reply(headers={"receivedStatus": "teapot"}))

        with pytest.raises(ValueError):
            TunnelClient(RELAY, transport=transport).fetch(TARGET)


class TestStrictMode:
    """Explicit handling of the relay fallback"""

    def test_strict_rejects_missing_side_channel(self):
        transport = RecordingTransport(reply(status=200))

        with pytest.raises(MissingSideChannelError):
            TunnelClient(RELAY, transport=transport, strict=True).fetch(TARGET)

    def test_strict_accepts_status_only(self):
        transport = RecordingTransport(reply(headers={"receivedStatus": "201"}))

        response = TunnelClient(RELAY, transport=transport, strict=True).fetch(TARGET)

        assert response.status == 201
        assert response.tunneled

    def test_strict_accepts_null_incoming_headers(self):
        """A null incomingHeaders header still counts as a relay side channel"""
        transport = RecordingTransport(reply(headers={"incomingHeaders": "null", "X-Relay": "1"}))

        response = TunnelClient(RELAY, transport=transport, strict=True).fetch(TARGET)

        assert response.get_header("X-Relay") == "1"
        assert not response.tunneled


class TestTransportErrors:
    """Transport failures reach the caller unchanged"""

    def test_transport_error_propagates(self):
        error = TransportError("connection refused")
        transport = RecordingTransport(error=error)

        with pytest.raises(TransportError) as exc_info:
            TunnelClient(RELAY, transport=transport).fetch(TARGET)

        assert exc_info.value is error

    def test_abort_propagates(self):
        error = RequestAborted("user cancelled")
        transport = RecordingTransport(error=error)

        with pytest.raises(RequestAborted) as exc_info:
            TunnelClient(RELAY, transport=transport).fetch(TARGET)

        assert exc_info.value is error
