import json

import pytest
from rich.console import Console
from typer.testing import CliRunner

from fake_wallet import CHAIN_ID, IDENTITY
from scatter import scatter_cli
from scatter.core.ApiTypes import ApiError, Identity
from shared.errors import RemoteError

runner = CliRunner()


class FakeClient:
    instances = []
    paired = True
    error = None

    def __init__(self, network=None, storage=None, config=None):
        self.network = network
        self.storage = storage
        self.config = config
        self.disposed = False
        self.calls = []
        FakeClient.instances.append(self)

    async def connect(self):
        return self.paired

    async def dispose(self):
        self.disposed = True

    async def get_version(self):
        if self.error is not None:
            raise self.error
        return "12.1.1"

    async def get_identity(self, fields):
        self.calls.append(("identity", fields))
        return Identity.from_dict(IDENTITY)

    async def forget_identity(self):
        return True

    async def authenticate(self, nonce):
        self.calls.append(("authenticate", nonce))
        return f"SIG_K1_{nonce}"

    async def link_account(self, key):
        return False


@pytest.fixture
def fake_client(monkeypatch):
    FakeClient.instances = []
    FakeClient.paired = True
    FakeClient.error = None
    monkeypatch.setattr(scatter_cli, "ScatterClient", FakeClient)
    monkeypatch.setattr(scatter_cli, "console", Console(width=200))
    return FakeClient


def base_args(tmp_path):
    return ["--storage", str(tmp_path / "scatter.json"), "--endpoint", "ws://127.0.0.1:6000"]


def test_endpoints_lists_candidates_in_order(fake_client, tmp_path):
    result = runner.invoke(scatter_cli.app, base_args(tmp_path) + ["--endpoint", "ws://127.0.0.1:6001", "endpoints"])
    assert result.exit_code == 0
    assert result.output.index("ws://127.0.0.1:6000") < result.output.index("ws://127.0.0.1:6001")
    assert "/socket.io/?EIO=3&transport=websocket" in result.output
    assert fake_client.instances == []


def test_version_connects_runs_and_disposes(fake_client, tmp_path):
    result = runner.invoke(scatter_cli.app, base_args(tmp_path) + ["--app-name", "cli-dapp", "version"])
    assert result.exit_code == 0
    assert "12.1.1" in result.output

    client = fake_client.instances[0]
    assert client.disposed
    assert client.config.app_name == "cli-dapp"
    assert [str(e) for e in client.config.endpoints] == ["ws://127.0.0.1:6000"]
    assert client.storage.path == tmp_path / "scatter.json"


def test_identity_requests_configured_network(fake_client, tmp_path):
    args = base_args(tmp_path) + ["--chain-id", CHAIN_ID, "--network-host", "jungle.example.com", "identity", "--json"]
    result = runner.invoke(scatter_cli.app, args)
    assert result.exit_code == 0
    assert json.loads(result.output)["name"] == "RandomUser"

    _, fields = fake_client.instances[0].calls[0]
    assert [n.chain_id for n in fields.accounts] == [CHAIN_ID]


def test_identity_table_output(fake_client, tmp_path):
    result = runner.invoke(scatter_cli.app, base_args(tmp_path) + ["identity"])
    assert result.exit_code == 0
    assert "RandomUser" in result.output
    assert "testaccount1" in result.output


def test_authenticate_prints_signature(fake_client, tmp_path):
    result = runner.invoke(scatter_cli.app, base_args(tmp_path) + ["authenticate", "n0nce"])
    assert result.exit_code == 0
    assert "SIG_K1_n0nce" in result.output


def test_link_account_reports_refusal(fake_client, tmp_path):
    result = runner.invoke(scatter_cli.app, base_args(tmp_path) + ["link-account", "EOS6MR"])
    assert result.exit_code == 0
    assert "Account not linked" in result.output


def test_unpaired_wallet_is_reported(fake_client, tmp_path):
    fake_client.paired = False
    result = runner.invoke(scatter_cli.app, base_args(tmp_path) + ["forget"])
    assert "did not pair" in result.output


def test_scatter_errors_exit_with_code_one(fake_client, tmp_path):
    fake_client.error = RemoteError(ApiError(message="User rejected the request", code=402))
    result = runner.invoke(scatter_cli.app, base_args(tmp_path) + ["version"])
    assert result.exit_code == 1
    assert "RemoteError" in result.output
    assert "User rejected the request" in result.output
    assert fake_client.instances[0].disposed


def test_invalid_endpoint_exits_with_code_one(fake_client, tmp_path):
    result = runner.invoke(scatter_cli.app, ["--storage", str(tmp_path / "s.json"),
                                             "--endpoint", "http://nowhere:1", "version"])
    assert result.exit_code == 1
    assert "Invalid endpoint scheme" in result.output
    assert fake_client.instances == []
