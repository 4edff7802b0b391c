"""
OAuth flow tests

Walks the Dropbox action through the whole stateless OAuth negotiation
with httpx.MockTransport standing in for Dropbox and the caller:

    form (no state) -> login link -> provider redirect -> callback forwards
    code to caller -> form exchanges code -> execute with access token

Run: cd api && python tests/test_oauth_flow.py
"""

import asyncio
import json
import os
import sys
import time
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import httpx

from integrations.actions.dispatch import ActionDispatcher
from integrations.actions.dropbox import DropboxAction
from integrations.actions.registry import ActionRegistry
from integrations.core.config import HubConfig
from integrations.core.crypto import ActionCrypto
from integrations.core.dropbox_client import AUTHORIZE_URL, LIST_FOLDER_URL, TOKEN_URL, UPLOAD_URL
from integrations.core.errors import AuthError, ConfigurationError
from integrations.core.oauth import (
    OAuthStage,
    build_oauth_link_form,
    decrypt_oauth_state,
    forward_authorization_code,
    resolve_stage,
)
from integrations.core.types import ActionRequest

T = 1700000000123
STATE_URL = "https://caller.example/action_hub_state/abc"
REDIRECT_URI = "https://hub.example/actions/dropbox/oauth/callback"


class FakeWorld:
    """Dropbox plus the caller's state endpoint, behind one MockTransport."""

    def __init__(self):
        self.forwarded: list[dict] = []
        self.uploads: list[tuple[dict, bytes]] = []
        self.valid_token = "tok-1"
        self.upload_status = 200
        self.transport = httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url == STATE_URL:
            self.forwarded.append(json.loads(request.content))
            return httpx.Response(202)
        if url == TOKEN_URL:
            form = parse_qs(request.content.decode())
            if form["code"] == ["abc"] and form["redirect_uri"] == [REDIRECT_URI]:
                return httpx.Response(200, json={"access_token": self.valid_token})
            return httpx.Response(400, json={"error": "invalid_grant"})

        if request.headers.get("Authorization") != f"Bearer {self.valid_token}":
            return httpx.Response(401, text="expired_access_token")
        if url == LIST_FOLDER_URL:
            return httpx.Response(200, json={"entries": [
                {".tag": "folder", "name": "reports"},
                {".tag": "file", "name": "notes.txt"},
            ]})
        if url == UPLOAD_URL:
            self.uploads.append((json.loads(request.headers["Dropbox-API-Arg"]), request.content))
            return httpx.Response(self.upload_status, json={"name": "ok"})
        return httpx.Response(404)


def _setup():
    config = HubConfig(
        base_url="https://hub.example",
        secret_key=ActionCrypto.generate_key(),
        dropbox_app_key="app-key",
        dropbox_app_secret="app-secret",
    )
    crypto = ActionCrypto.from_config(config)
    world = FakeWorld()
    registry = ActionRegistry()
    registry.register(DropboxAction(config, crypto, transport=world.transport, clock=lambda: T))
    registry.freeze()
    return ActionDispatcher(registry, config), crypto, world


def _request(**overrides) -> ActionRequest:
    body = {"type": "query", "data": {"state_url": STATE_URL}, "webhook_id": "wh-1"}
    body.update(overrides)
    return ActionRequest.from_payload("dropbox", body)


def test_full_oauth_flow():
    dispatcher, crypto, world = _setup()

    # 1. No credentials: a single login link, state reset
    response = asyncio.run(dispatcher.form("dropbox", _request()))
    assert response.success
    fields = response.form.fields
    assert [f.type for f in fields] == ["oauth_link"]
    assert response.state.data == "reset"

    link = urlparse(fields[0].oauth_url)
    assert f"{link.scheme}://{link.netloc}{link.path}" == "https://hub.example/actions/dropbox/oauth"
    encrypted_state = parse_qs(link.query)["state"][0]
    assert STATE_URL not in fields[0].oauth_url, "Return URL must only travel encrypted"
    print("  ✓ login link issued")

    # 2. Browser follows the link: hub redirects to Dropbox with the same state
    response = asyncio.run(dispatcher.oauth_url("dropbox", REDIRECT_URI, encrypted_state))
    assert response.redirect_url.startswith(AUTHORIZE_URL)
    query = parse_qs(urlparse(response.redirect_url).query)
    assert query["state"] == [encrypted_state]
    assert query["client_id"] == ["app-key"]
    assert query["redirect_uri"] == [REDIRECT_URI]
    print("  ✓ provider redirect built")

    # 3. Dropbox calls back: code is forwarded to the caller's state URL
    response = asyncio.run(dispatcher.oauth_fetch_info(
        "dropbox", {"code": "abc", "state": encrypted_state}, REDIRECT_URI
    ))
    assert response.success, response.message
    assert world.forwarded == [{"code": "abc", "redirect": REDIRECT_URI}]
    print("  ✓ code forwarded to caller")

    # 4. Caller retries with the forwarded state: code exchanged, token handed back
    state_json = json.dumps(world.forwarded[0])
    request = _request(data={"state_url": STATE_URL, "state_json": state_json})
    assert resolve_stage(request) == OAuthStage.CODE_EXCHANGE

    response = asyncio.run(dispatcher.form("dropbox", request))
    assert response.success
    assert [f.name for f in response.form.fields] == ["directory", "filename", "includeTimestamp"]
    options = [o.name for o in response.form.field("directory").options]
    assert options == ["__root", "reports"]
    assert json.loads(response.state.data) == {"access_token": "tok-1"}
    print("  ✓ code exchanged for token")

    # 5. Authenticated execute
    token_state = response.state.data
    request = _request(
        data={"state_json": token_state},
        form_params={"directory": "reports", "filename": "q1", "includeTimestamp": "yes"},
        attachment={"data": "YSxiCjEsMgo=", "fileExtension": "csv"},
    )
    assert resolve_stage(request) == OAuthStage.AUTHENTICATED

    response = asyncio.run(dispatcher.execute("dropbox", request))
    assert response.success, response.message
    assert response.filename == f"q1{T}.csv"
    api_arg, content = world.uploads[0]
    assert api_arg["path"] == f"/reports/q1{T}.csv"
    assert content == b"a,b\n1,2\n"
    print("  ✓ authenticated upload")

    # 6. Probe
    response = asyncio.run(dispatcher.oauth_check("dropbox", request))
    assert response.authenticated is True

    print("✅ full_oauth_flow: PASSED")


def test_tampered_state_rejected_at_callback():
    dispatcher, crypto, world = _setup()
    form = asyncio.run(dispatcher.form("dropbox", _request())).form
    encrypted_state = parse_qs(urlparse(form.fields[0].oauth_url).query)["state"][0]
    tampered = encrypted_state[:20] + ("A" if encrypted_state[20] != "A" else "B") + encrypted_state[21:]

    response = asyncio.run(dispatcher.oauth_fetch_info("dropbox", {"code": "abc", "state": tampered}, REDIRECT_URI))
    assert not response.success
    assert response.error.kind == "auth"
    assert world.forwarded == [], "Nothing may be forwarded for a bad state"
    print("✅ tampered_state_rejected_at_callback: PASSED")


def test_expired_state_rejected_at_callback():
    dispatcher, crypto, world = _setup()
    with patch("time.time", return_value=time.time() - 3600):
        encrypted_state = crypto.encrypt_json({"stateurl": STATE_URL})

    response = asyncio.run(dispatcher.oauth_fetch_info(
        "dropbox", {"code": "abc", "state": encrypted_state}, REDIRECT_URI
    ))
    assert response.error.kind == "auth"
    assert world.forwarded == []
    print("✅ expired_state_rejected_at_callback: PASSED")


def test_provider_error_and_missing_code():
    dispatcher, crypto, world = _setup()
    encrypted_state = crypto.encrypt_json({"stateurl": STATE_URL})

    for params in (
        {"error": "access_denied", "state": encrypted_state},
        {"state": encrypted_state},
        {"code": "abc"},
    ):
        response = asyncio.run(dispatcher.oauth_fetch_info("dropbox", params, REDIRECT_URI))
        assert response.error.kind == "auth", params

    assert world.forwarded == []
    print("✅ provider_error_and_missing_code: PASSED")


def test_caller_rejects_forwarded_code():
    _, crypto, _ = _setup()
    transport = httpx.MockTransport(lambda request: httpx.Response(500))
    encrypted_state = crypto.encrypt_json({"stateurl": STATE_URL})

    try:
        asyncio.run(forward_authorization_code(
            crypto, {"code": "abc", "state": encrypted_state}, REDIRECT_URI, transport=transport
        ))
        assert False, "Should have raised AuthError"
    except AuthError as e:
        assert e.safe_message == "Could not complete authorization"

    print("✅ caller_rejects_forwarded_code: PASSED")


def test_bad_code_resets_state_on_execute():
    dispatcher, crypto, world = _setup()
    request = _request(
        data={"state_json": json.dumps({"code": "wrong", "redirect": REDIRECT_URI})},
        form_params={"directory": "__root", "filename": "q1"},
        attachment={"data": "eA=="},
    )
    response = asyncio.run(dispatcher.execute("dropbox", request))

    assert not response.success
    assert response.error.kind == "auth"
    assert response.state.data == "reset"
    assert world.uploads == []
    print("✅ bad_code_resets_state_on_execute: PASSED")


def test_upload_failure_resets_state():
    dispatcher, crypto, world = _setup()
    world.upload_status = 409
    request = _request(
        data={"state_json": json.dumps({"access_token": "tok-1"})},
        form_params={"directory": "__root", "filename": "q1"},
        attachment={"data": "eA==", "fileExtension": "csv"},
    )
    response = asyncio.run(dispatcher.execute("dropbox", request))

    assert not response.success
    assert response.error.kind == "delivery"
    assert response.state.data == "reset"
    assert world.uploads[0][0]["path"] == "/q1.csv"
    print("✅ upload_failure_resets_state: PASSED")


def test_link_form_requires_config():
    _, crypto, _ = _setup()
    config = HubConfig(base_url="https://hub.example")

    # No state_url: still a login link, but its state cannot complete
    form = build_oauth_link_form("dropbox", _request(data={}), crypto, config)
    assert [f.type for f in form.fields] == ["oauth_link"]
    assert form.state.data == "reset"
    encrypted_state = parse_qs(urlparse(form.fields[0].oauth_url).query)["state"][0]
    try:
        decrypt_oauth_state(crypto, encrypted_state, ttl=600)
        assert False, "State without a return URL should be rejected"
    except AuthError:
        pass

    try:
        build_oauth_link_form("dropbox", _request(), None, config)
        assert False, "Missing codec should be rejected"
    except ConfigurationError:
        pass

    try:
        decrypt_oauth_state(crypto, crypto.encrypt_json({"other": 1}), ttl=600)
        assert False, "State without stateurl should be rejected"
    except AuthError:
        pass

    print("✅ link_form_requires_config: PASSED")


def test_login_link_without_state_url_fails_at_callback():
    dispatcher, crypto, world = _setup()
    request = ActionRequest.from_payload("dropbox", {"type": "query", "webhook_id": "wh-2"})

    response = asyncio.run(dispatcher.form("dropbox", request))
    assert response.success, response.message
    assert [f.type for f in response.form.fields] == ["oauth_link"]
    assert response.state.data == "reset"

    encrypted_state = parse_qs(urlparse(response.form.fields[0].oauth_url).query)["state"][0]
    response = asyncio.run(dispatcher.oauth_fetch_info(
        "dropbox", {"code": "abc", "state": encrypted_state}, REDIRECT_URI
    ))
    assert not response.success
    assert response.error.kind == "auth"
    assert world.forwarded == []
    print("✅ login_link_without_state_url_fails_at_callback: PASSED")


if __name__ == "__main__":
    test_full_oauth_flow()
    test_tampered_state_rejected_at_callback()
    test_expired_state_rejected_at_callback()
    test_provider_error_and_missing_code()
    test_caller_rejects_forwarded_code()
    test_bad_code_resets_state_on_execute()
    test_upload_failure_resets_state()
    test_link_form_requires_config()
    test_login_link_without_state_url_fails_at_callback()
    print("\n✅ All OAuth flow tests passed")
