"""
Tests for rofl.yaml parsing.
"""
import pytest

from app.services.rofl.manifest import Manifest, ManifestParseError, parse_manifest

FULL_MANIFEST = """
name: wt3
version: 0.2.1
description: Trading bot
author: Oasis
license: Apache-2.0
tee: tdx
kind: container
repository: https://github.com/oasisprotocol/wt3
homepage: https://wt3.example
resources:
  memory: 4096
  cpus: 2
  storage:
    kind: disk-persistent
    size: 10000
artifacts:
  builder: ghcr.io/oasisprotocol/rofl-dev:v0.5.0
  firmware: https://example.com/ovmf.fd
  container:
    runtime: https://example.com/runtime
    compose: compose.yaml
deployments:
  mainnet:
    network: mainnet
    paratime: sapphire
    app_id: rofl1qrtetspnld9efpeasxmryl6nw9mgllr0euls3dwn
    policy:
      enclaves:
        - id: rofl1qpjsc3qplf2szw7w3rpzrpq5rqvzv4q5x5j23msu
        - id: rofl1qzzzzzzzzzzzzzzzzzzzzzzzzzzzzzzzzzzzzzzz
  testnet:
    network: testnet
    policy:
      enclaves:
        - rofl1qtesttesttesttesttesttesttesttesttesttest
"""


class TestParseManifest:
    def test_full_manifest(self):
        manifest = parse_manifest(FULL_MANIFEST)

        assert manifest.name == "wt3"
        assert manifest.version == "0.2.1"
        assert manifest.tee == "tdx"
        assert manifest.resources.memory == 4096
        assert manifest.resources.cpus == 2
        assert manifest.resources.storage.kind == "disk-persistent"
        assert manifest.artifacts.container.compose == "compose.yaml"
        assert sorted(manifest.deployment_names) == ["mainnet", "testnet"]

    def test_enclave_ids_from_objects(self):
        mainnet = parse_manifest(FULL_MANIFEST).deployments["mainnet"]

        assert mainnet.network == "mainnet"
        assert mainnet.app_id == "rofl1qrtetspnld9efpeasxmryl6nw9mgllr0euls3dwn"
        assert mainnet.enclave_ids == [
            "rofl1qpjsc3qplf2szw7w3rpzrpq5rqvzv4q5x5j23msu",
            "rofl1qzzzzzzzzzzzzzzzzzzzzzzzzzzzzzzzzzzzzzzz",
        ]

    def test_enclave_ids_from_strings(self):
        testnet = parse_manifest(FULL_MANIFEST).deployments["testnet"]
        assert testnet.enclave_ids == ["rofl1qtesttesttesttesttesttesttesttesttesttest"]

    def test_unknown_fields_ignored(self):
        manifest = parse_manifest("name: x\nsecrets:\n  - name: KEY\nextra: 1\n")
        assert manifest.name == "x"

    def test_missing_sections_default(self):
        manifest = parse_manifest("name: minimal\n")

        assert manifest.deployments == {}
        assert manifest.deployment_names == []
        assert manifest.resources.memory == 0

    def test_null_values(self):
        manifest = parse_manifest("name:\ndeployments:\n  mainnet:\n")

        assert manifest.name == ""
        assert manifest.deployment_names == ["mainnet"]
        assert manifest.deployments["mainnet"] is None

    def test_deployment_without_policy(self):
        manifest = parse_manifest("deployments:\n  mainnet:\n    network: mainnet\n")
        assert manifest.deployments["mainnet"].enclave_ids == []

    @pytest.mark.parametrize("text", ["", "   ", "# only a comment\n"])
    def test_empty_document(self, text):
        assert parse_manifest(text) == Manifest()

    @pytest.mark.parametrize("text", [
        "- a\n- b\n",
        "just a string",
        "deployments: [1, 2]\n",
        "name: [unclosed\n",
    ])
    def test_malformed(self, text):
        with pytest.raises(ManifestParseError, match="failed to parse rofl.yaml"):
            parse_manifest(text)

    def test_parse_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_manifest("- a\n")
