"""
Tests for scripts/plugins/no_public_buckets.py example plugin.

Covers:
- get_public_access_block with and without a configuration
- is_at_risk for full, partial and missing configurations
- main: bucket file rewrite and the warnings it prints
"""
import json
import os
import sys
from unittest.mock import MagicMock

import boto3
import pytest
from botocore.exceptions import ClientError
from moto import mock_aws

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'scripts', 'plugins'))

from no_public_buckets import get_public_access_block, is_at_risk, main

FULL_BLOCK = {
    "BlockPublicAcls": True,
    "IgnorePublicAcls": True,
    "BlockPublicPolicy": True,
    "RestrictPublicBuckets": True,
}


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def aws_credentials(monkeypatch):
    """Mocked AWS Credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def output_dir(tmp_path):
    root = tmp_path / ".cfs"
    (root / "buckets").mkdir(parents=True)
    return root


def mirror_bucket(output_dir, name):
    path = output_dir / "buckets" / name
    path.write_text(json.dumps({"Name": name, "CreationDate": "2024-01-02T00:00:00+00:00"}))
    return path


# =============================================================================
# Helper Tests
# =============================================================================

class TestIsAtRisk:
    """Tests for is_at_risk function."""

    def test_full_block(self):
        assert not is_at_risk(FULL_BLOCK)

    def test_partial_block(self):
        assert is_at_risk({**FULL_BLOCK, "RestrictPublicBuckets": False})

    def test_missing_configuration(self):
        assert is_at_risk(None)


class TestGetPublicAccessBlock:
    """Tests for get_public_access_block function."""

    @mock_aws
    def test_configured_bucket(self, aws_credentials):
        s3 = boto3.client("s3", region_name="us-east-1")
        s3.create_bucket(Bucket="locked")
        s3.put_public_access_block(Bucket="locked", PublicAccessBlockConfiguration=FULL_BLOCK)

        assert get_public_access_block(s3, "locked") == FULL_BLOCK

    @mock_aws
    def test_missing_configuration_is_none(self, aws_credentials):
        s3 = boto3.client("s3", region_name="us-east-1")
        s3.create_bucket(Bucket="open")

        assert get_public_access_block(s3, "open") is None

    def test_other_errors_propagate(self):
        s3 = MagicMock()
        s3.get_public_access_block.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "GetPublicAccessBlock"
        )

        with pytest.raises(ClientError):
            get_public_access_block(s3, "secret")


# =============================================================================
# main Tests
# =============================================================================

class TestMain:
    """Tests for the plugin entry point."""

    @mock_aws
    def test_rewrites_files_and_warns(self, aws_credentials, output_dir, capsys):
        s3 = boto3.client("s3", region_name="us-east-1")
        s3.create_bucket(Bucket="locked")
        s3.put_public_access_block(Bucket="locked", PublicAccessBlockConfiguration=FULL_BLOCK)
        s3.create_bucket(Bucket="open")
        locked = mirror_bucket(output_dir, "locked")
        opened = mirror_bucket(output_dir, "open")

        assert main(str(output_dir)) == 0

        locked_doc = json.loads(locked.read_text())
        assert locked_doc["PublicAccessBlockConfiguration"] == FULL_BLOCK
        assert locked_doc["CreationDate"] == "2024-01-02T00:00:00+00:00"
        assert json.loads(opened.read_text())["PublicAccessBlockConfiguration"] is None

        captured = capsys.readouterr()
        assert "The bucket [open] has no PublicAccessBlockConfiguration" in captured.err
        assert "[locked]" not in captured.err
        assert "Nice!" not in captured.out

    @mock_aws
    def test_all_buckets_blocked(self, aws_credentials, output_dir, capsys):
        s3 = boto3.client("s3", region_name="us-east-1")
        s3.create_bucket(Bucket="locked")
        s3.put_public_access_block(Bucket="locked", PublicAccessBlockConfiguration=FULL_BLOCK)
        mirror_bucket(output_dir, "locked")

        assert main(str(output_dir)) == 0

        captured = capsys.readouterr()
        assert "Nice! There are no public buckets" in captured.out
        assert captured.err == ""

    def test_existing_configuration_is_not_fetched_again(self, output_dir, monkeypatch, capsys):
        path = output_dir / "buckets" / "cached"
        path.write_text(json.dumps({"Name": "cached", "PublicAccessBlockConfiguration": FULL_BLOCK}))
        s3 = MagicMock()
        monkeypatch.setattr(boto3, "client", lambda *args, **kwargs: s3)

        assert main(str(output_dir)) == 0

        s3.get_public_access_block.assert_not_called()
        assert "Nice!" in capsys.readouterr().out

    @mock_aws
    def test_output_dir_from_environment(self, aws_credentials, output_dir, monkeypatch, capsys):
        boto3.client("s3", region_name="us-east-1").create_bucket(Bucket="open")
        mirror_bucket(output_dir, "open")
        monkeypatch.setenv("CFS_OUTPUT", str(output_dir))

        assert main() == 0

        assert "[open]" in capsys.readouterr().err
