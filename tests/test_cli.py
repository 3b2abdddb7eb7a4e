"""Tests for the vc-credential command line."""

import json

import pytest
import respx
from click.testing import CliRunner
from httpx import Response

from conftest import HOLDER_DID
from vc_credential.cli import main
from vc_credential.proof import base64url_encode


ISSUER = "did:web:example.com"


def invoke(*args, input=None):
    return CliRunner().invoke(main, ["--log-level", "ERROR", *args], input=input)


@pytest.fixture
def key_file(tmp_path):
    """Signing key written by keygen."""
    path = tmp_path / "issuer-key.json"
    result = invoke("keygen", "--id", "key-1", "--out", str(path))
    assert result.exit_code == 0
    return path


@pytest.fixture
def credential_file(tmp_path, key_file):
    """Credential issued with the key file."""
    path = tmp_path / "credential.json"
    result = invoke(
        "issue",
        "--key", str(key_file),
        "--issuer", ISSUER,
        "--type", "IdentityCredential",
        "--subject", json.dumps({"holder": {"id": HOLDER_DID}}),
        "--out", str(path),
    )
    assert result.exit_code == 0
    return path


class TestKeygen:
    """Tests for key generation."""

    def test_keygen_stdout(self):
        """Test keygen prints the key as JSON."""
        result = invoke("keygen", "--type", "secp256k1", "--id", "k")

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["id"] == "k"
        assert data["type"] == "secp256k1"
        assert len(data["publicKeyHex"]) == 66
        assert data["privateKeyHex"]

    def test_keygen_file(self, key_file):
        """Test keygen writes the key file."""
        data = json.loads(key_file.read_text())
        assert data["id"] == "key-1"
        assert data["type"] == "Ed25519"


class TestIssue:
    """Tests for the issue command."""

    def test_issue_stdout(self, key_file):
        """Test issue prints the signed credential."""
        result = invoke(
            "issue",
            "--key", str(key_file),
            "--issuer", ISSUER,
            "--type", "IdentityCredential",
            "--subject", json.dumps({"holder": {"id": HOLDER_DID}}),
            "--context", "https://example.com/ctx/v1",
            "--expires", "2099-01-01T00:00:00Z",
        )

        assert result.exit_code == 0
        credential = json.loads(result.output)
        assert credential["type"] == ["VerifiableCredential", "IdentityCredential"]
        assert credential["@context"][-1] == "https://example.com/ctx/v1"
        assert credential["expirationDate"] == "2099-01-01T00:00:00Z"
        assert credential["proof"]["type"] == "JwtProof2020"

    def test_issue_invalid_subject(self, key_file):
        """Test a subject that is not JSON is a usage error."""
        result = invoke(
            "issue",
            "--key", str(key_file),
            "--issuer", ISSUER,
            "--type", "IdentityCredential",
            "--subject", "{not json",
        )
        assert result.exit_code == 2

    def test_issue_missing_key_file(self, tmp_path):
        """Test a missing key file fails."""
        result = invoke(
            "issue",
            "--key", str(tmp_path / "missing.json"),
            "--issuer", ISSUER,
            "--type", "IdentityCredential",
            "--subject", "{}",
        )
        assert result.exit_code == 1
        assert "Key file not found" in result.output


class TestVerify:
    """Tests for the verify command."""

    def test_verify_valid(self, credential_file, key_file):
        """Test a fresh credential verifies."""
        result = invoke("verify", str(credential_file), "--key", str(key_file), "--json-output")

        assert result.exit_code == 0
        output = json.loads(result.output)
        assert output["verified"] is True
        assert output["reason"] is None
        assert output["result"]["issuer"] == ISSUER
        assert output["result"]["subject"] == HOLDER_DID

    def test_verify_rich_output(self, credential_file, key_file):
        """Test the default panel output."""
        result = invoke("verify", str(credential_file), "--key", str(key_file))

        assert result.exit_code == 0
        assert "VERIFIED" in result.output

    def test_verify_with_public_key(self, credential_file, key_file):
        """Test verifying with a hex public key."""
        public_key_hex = json.loads(key_file.read_text())["publicKeyHex"]
        result = invoke("verify", str(credential_file), "--public-key", public_key_hex, "--json-output")
        assert result.exit_code == 0

    def test_verify_tampered(self, credential_file, key_file):
        """Test an edited credential is rejected with field_mismatch."""
        credential = json.loads(credential_file.read_text())
        credential["credentialSubject"]["holder"]["id"] = "did:x:mallory"
        credential_file.write_text(json.dumps(credential))

        result = invoke("verify", str(credential_file), "--key", str(key_file), "--json-output")

        assert result.exit_code == 1
        output = json.loads(result.output)
        assert output["verified"] is False
        assert output["reason"] == "field_mismatch"

    def test_verify_expected_issuer(self, credential_file, key_file):
        """Test --expected-issuer rejects other issuers."""
        result = invoke(
            "verify", str(credential_file),
            "--key", str(key_file),
            "--expected-issuer", "did:web:other.example",
            "--json-output",
        )
        assert result.exit_code == 1
        assert json.loads(result.output)["reason"] == "unexpected_issuer"

    def test_verify_from_stdin(self, credential_file, key_file):
        """Test reading the credential from stdin."""
        result = invoke(
            "verify", "-", "--key", str(key_file), "--json-output",
            input=credential_file.read_text(),
        )
        assert result.exit_code == 0

    def test_verify_invalid_json(self, key_file):
        """Test invalid input JSON exits with 2."""
        result = invoke("verify", "-", "--key", str(key_file), "--json-output", input="{broken")

        assert result.exit_code == 2
        assert "Invalid JSON" in json.loads(result.output)["error"]

    def test_verify_requires_key_source(self, credential_file):
        """Test verify without a key option is a usage error."""
        result = invoke("verify", str(credential_file))
        assert result.exit_code == 2

    @respx.mock
    def test_verify_resolving_did_web(self, credential_file, key_file):
        """Test --resolve fetches the issuer's DID Document."""
        public_key_hex = json.loads(key_file.read_text())["publicKeyHex"]
        respx.get("https://example.com/.well-known/did.json").mock(
            return_value=Response(200, json={
                "id": ISSUER,
                "verificationMethod": [{
                    "id": f"{ISSUER}#key-1",
                    "type": "JsonWebKey2020",
                    "controller": ISSUER,
                    "publicKeyJwk": {
                        "kty": "OKP",
                        "crv": "Ed25519",
                        "x": base64url_encode(bytes.fromhex(public_key_hex)),
                    },
                }],
                "assertionMethod": [f"{ISSUER}#key-1"],
            })
        )

        result = invoke("verify", str(credential_file), "--resolve", "--json-output")

        assert result.exit_code == 0
        assert json.loads(result.output)["verified"] is True

    @respx.mock
    def test_verify_resolution_failure(self, credential_file):
        """Test DID resolution errors exit with 2."""
        respx.get("https://example.com/.well-known/did.json").mock(return_value=Response(404))

        result = invoke("verify", str(credential_file), "--resolve", "--json-output")

        assert result.exit_code == 2
        assert "DID resolution failed" in json.loads(result.output)["error"]

    @respx.mock
    def test_verify_from_url(self, credential_file, key_file):
        """Test loading the credential over HTTP."""
        respx.get("https://example.com/credentials/1").mock(
            return_value=Response(200, json=json.loads(credential_file.read_text()))
        )

        result = invoke(
            "verify", "https://example.com/credentials/1", "--key", str(key_file), "--json-output"
        )
        assert result.exit_code == 0


class TestInspect:
    """Tests for the inspect command."""

    def test_inspect(self, credential_file):
        """Test the decoded header and payload."""
        result = invoke("inspect", str(credential_file))

        assert result.exit_code == 0
        decoded = json.loads(result.output)
        assert decoded["header"] == {"alg": "EdDSA", "typ": "JWT"}
        assert decoded["payload"]["iss"] == ISSUER
        assert decoded["payload"]["vc"]["credentialSubject"]["holder"]["id"] == HOLDER_DID

    def test_inspect_invalid_json(self, tmp_path):
        """Test an unreadable credential file exits with 2."""
        path = tmp_path / "bad.json"
        path.write_text("{not json")

        result = invoke("inspect", str(path))

        assert result.exit_code == 2
        assert "Invalid JSON" in result.output

    @respx.mock
    def test_inspect_http_error(self):
        """Test a failing credential URL exits with 2."""
        respx.get("https://example.com/credentials/1").mock(return_value=Response(500))

        result = invoke("inspect", "https://example.com/credentials/1", "--timeout", "5")

        assert result.exit_code == 2
        assert "HTTP error" in result.output

    @respx.mock
    def test_inspect_from_url(self, credential_file):
        """Test inspecting a credential loaded over HTTP."""
        respx.get("https://example.com/credentials/1").mock(
            return_value=Response(200, json=json.loads(credential_file.read_text()))
        )

        result = invoke("inspect", "https://example.com/credentials/1")

        assert result.exit_code == 0
        assert json.loads(result.output)["payload"]["iss"] == ISSUER

    def test_inspect_without_proof(self, tmp_path):
        """Test a credential without a proof fails."""
        path = tmp_path / "bare.json"
        path.write_text(json.dumps({"id": "urn:x"}))

        result = invoke("inspect", str(path))
        assert result.exit_code == 1
        assert "no proof" in result.output
