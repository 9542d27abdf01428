"""
Tests for the command line interface
"""

import json
import os

import pytest
from click.testing import CliRunner

import network.upload
from cli import config as cli_config
from cli.main import cli
from crypto.auth import verify_upload_token
from ipld.cid import CID


@pytest.fixture
def runner(monkeypatch):
    monkeypatch.setattr(cli_config, "CONFIG_SEARCH_PATHS", [])
    for key in list(os.environ):
        if key.startswith("METAPLEX_AUTH_"):
            monkeypatch.delenv(key)
    return CliRunner()


@pytest.fixture
def keyfile(tmp_path, keypair):
    path = tmp_path / "id.json"
    path.write_text(json.dumps(list(keypair.secret_key)))
    return str(path)


@pytest.fixture
def offline(monkeypatch, mock_session):
    """Route every upload through the mocked session."""
    monkeypatch.setattr(network.upload, "create_session", lambda pool_size=3: mock_session)
    return mock_session


class TestCLIBasics:
    """Test global options."""

    def test_help(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ("did", "token", "upload", "nft", "bundle"):
            assert command in result.output

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_keyfile_required(self, runner):
        result = runner.invoke(cli, ["did"])
        assert result.exit_code != 0


class TestDidCommand:
    """Test the did command."""

    def test_json_output(self, runner, keyfile, keypair):
        result = runner.invoke(cli, ["-o", "json", "did", "-k", keyfile])

        assert result.exit_code == 0, result.output
        assert json.loads(result.output) == {
            "did": keypair.did,
            "public_key": keypair.public_key.hex(),
        }

    def test_table_output(self, runner, keyfile, keypair):
        result = runner.invoke(cli, ["did", "-k", keyfile])
        assert result.exit_code == 0
        assert keypair.did in result.output

    def test_yaml_output(self, runner, keyfile, keypair):
        result = runner.invoke(cli, ["-o", "yaml", "did", "-k", keyfile])
        assert result.exit_code == 0
        assert f"did: {keypair.did}" in result.output

    def test_invalid_keyfile(self, runner, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("[1, 2, 3]")

        result = runner.invoke(cli, ["did", "-k", str(path)])
        assert result.exit_code == 1
        assert "Error (issuance)" in result.output


class TestTokenCommand:
    """Test the token command."""

    def test_issue_token(self, runner, keyfile, keypair):
        root = str(CID.from_data(b"content"))
        result = runner.invoke(cli, ["-o", "json", "token", "-k", keyfile, "--cluster", "mainnet-beta", root])

        assert result.exit_code == 0, result.output
        output = json.loads(result.output)
        decoded = verify_upload_token(output["token"], root)
        assert decoded.issuer == keypair.did
        assert decoded.tags["solanaCluster"] == "mainnet-beta"
        assert decoded.tags["mintingAgent"] == "metaplex-auth/cli"

    def test_config_file_cluster(self, runner, keyfile, tmp_path):
        config_path = tmp_path / "config.json"
        config_path.write_text(json.dumps({"cluster": "testnet", "minting_agent": "my-minter"}))
        root = str(CID.from_data(b"content"))

        result = runner.invoke(cli, ["-c", str(config_path), "-o", "json", "token", "-k", keyfile, root])

        assert result.exit_code == 0, result.output
        tags = verify_upload_token(json.loads(result.output)["token"]).tags
        assert tags["solanaCluster"] == "testnet"
        assert tags["mintingAgent"] == "my-minter"

    def test_invalid_configuration(self, runner, keyfile):
        root = str(CID.from_data(b"content"))
        result = runner.invoke(cli, ["token", "-k", keyfile, root], env={"METAPLEX_AUTH_CLUSTER": "localnet"})

        assert result.exit_code == 1
        assert "Invalid cluster" in result.output


class TestStoreCommands:
    """Test commands that upload content."""

    def test_upload_files(self, runner, keyfile, tmp_path, offline):
        (tmp_path / "a.txt").write_text("a")
        images = tmp_path / "images"
        images.mkdir()
        (images / "0.png").write_bytes(b"png")

        result = runner.invoke(cli, ["upload", "-k", keyfile, str(tmp_path / "a.txt"), str(images)])

        assert result.exit_code == 0, result.output
        assert "ipfs://" in result.output
        assert "images/0.png" in result.output
        assert offline.post.call_count == 1

    def test_nft(self, runner, keyfile, nft_directory, offline):
        result = runner.invoke(cli, ["nft", "-k", keyfile, str(nft_directory / "0.json")])

        assert result.exit_code == 0, result.output
        assert "metadata_uri" in result.output
        assert "/metadata.json" in result.output
        assert offline.post.call_count == 2

    def test_bundle(self, runner, keyfile, nft_directory, offline):
        result = runner.invoke(cli, ["bundle", "-k", keyfile, str(nft_directory)])

        assert result.exit_code == 0, result.output
        assert "root_cid" in result.output
        assert offline.post.call_count == 1

    def test_empty_bundle(self, runner, keyfile, tmp_path, offline):
        empty = tmp_path / "empty"
        empty.mkdir()

        result = runner.invoke(cli, ["bundle", "-k", keyfile, str(empty)])
        assert result.exit_code == 1
        offline.post.assert_not_called()

    def test_upload_failure_reports_stage(self, runner, keyfile, tmp_path, offline, response_factory):
        offline.post.side_effect = None
        offline.post.return_value = response_factory(500, {"ok": False, "error": {"message": "unavailable"}})
        (tmp_path / "a.txt").write_text("a")

        result = runner.invoke(cli, ["upload", "-k", keyfile, str(tmp_path / "a.txt")],
                               env={"METAPLEX_AUTH_MAX_RETRIES": "0"})

        assert result.exit_code == 1
        assert "Error (upload): unavailable" in result.output
        assert offline.post.call_count == 1
