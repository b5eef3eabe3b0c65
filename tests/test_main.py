import os

from meetingsync.main import build_parser, prepare_environment
from meetingsync.models import Provider
from meetingsync.oauth import OAuthClientConfig, installed_app_flow


def test_prepare_environment_relaxes_token_scope(monkeypatch):
    monkeypatch.delenv("OAUTHLIB_RELAX_TOKEN_SCOPE", raising=False)

    prepare_environment()

    assert os.environ["OAUTHLIB_RELAX_TOKEN_SCOPE"] == "1"


def test_building_a_flow_leaves_environment_alone(monkeypatch):
    monkeypatch.delenv("OAUTHLIB_RELAX_TOKEN_SCOPE", raising=False)

    flow = installed_app_flow(OAuthClientConfig.microsoft("app-id", "secret"))

    assert flow.client_config["client_id"] == "app-id"
    assert "OAUTHLIB_RELAX_TOKEN_SCOPE" not in os.environ


def test_parser_accepts_provider_commands():
    args = build_parser().parse_args(["--verbose", "sign-in", Provider.OUTLOOK.value])

    assert args.command == "sign-in"
    assert args.provider == "outlook"
    assert args.verbose
