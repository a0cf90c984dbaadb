"""
Tests for the EC2 provider wrapper with a mocked boto3 session.
"""

from unittest.mock import MagicMock

import pytest

from vpntunnel.provider import Ec2Provider, is_not_found


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def ec2(session):
    return session.client.return_value


class TestEc2Provider:
    """Test request shapes sent to EC2."""

    def test_clients_are_cached_per_region(self, session):
        provider = Ec2Provider(session=session)

        provider.client("eu-west-1")
        provider.client("eu-west-1")
        provider.client("us-east-1")

        assert session.client.call_count == 2
        assert session.client.call_args[1]["region_name"] == "us-east-1"

    def test_latest_image_picks_newest(self, session, ec2):
        ec2.describe_images.return_value = {"Images": [
            {"ImageId": "ami-old", "CreationDate": "2024-01-01T00:00:00.000Z"},
            {"ImageId": "ami-new", "CreationDate": "2024-06-01T00:00:00.000Z"},
        ]}

        assert Ec2Provider(session=session).latest_image("eu-west-1") == "ami-new"
        assert ec2.describe_images.call_args[1]["Owners"] == ["099720109477"]

    def test_latest_image_none(self, session, ec2):
        ec2.describe_images.return_value = {"Images": []}

        with pytest.raises(LookupError):
            Ec2Provider(session=session).latest_image("eu-west-1")

    def test_run_spot_instance(self, session, ec2):
        ec2.run_instances.return_value = {"Instances": [{"InstanceId": "i-0abc"}]}

        instance_id = Ec2Provider(session=session).run_spot_instance(
            region="eu-west-1",
            image_id="ami-new",
            instance_type="t3.nano",
            key_name="vpn-tunnel-key-1",
            group_id="sg-0abc",
            user_data="#!/bin/bash\n",
            tags={"VpnTunnel": "OnDemand", "Name": "vpn-tunnel-instance"},
            max_price="0.10",
        )

        assert instance_id == "i-0abc"
        kwargs = ec2.run_instances.call_args[1]
        assert kwargs["InstanceInitiatedShutdownBehavior"] == "terminate"
        assert kwargs["InstanceMarketOptions"]["MarketType"] == "spot"
        assert kwargs["InstanceMarketOptions"]["SpotOptions"]["MaxPrice"] == "0.10"
        assert kwargs["TagSpecifications"][0]["ResourceType"] == "instance"
        assert {"Key": "VpnTunnel", "Value": "OnDemand"} in kwargs["TagSpecifications"][0]["Tags"]

    def test_describe_missing_instance(self, session, ec2, make_client_error):
        ec2.describe_instances.side_effect = make_client_error("InvalidInstanceID.NotFound")

        provider = Ec2Provider(session=session)

        assert provider.describe_instance("eu-west-1", "i-gone") is None
        assert provider.instance_state("eu-west-1", "i-gone") == "not-found"

    def test_waiter_budget(self, session, ec2):
        Ec2Provider(session=session).wait_for_instance("eu-west-1", "i-0abc", "running", 300)

        ec2.get_waiter.assert_called_once_with("instance_running")
        config = ec2.get_waiter.return_value.wait.call_args[1]["WaiterConfig"]
        assert config == {"Delay": 5, "MaxAttempts": 60}

    def test_tagged_instances_filter_by_tag(self, session, ec2):
        paginator = ec2.get_paginator.return_value
        paginator.paginate.return_value = [
            {"Reservations": [{"Instances": [{"InstanceId": "i-1"}]}]},
            {"Reservations": [{"Instances": [{"InstanceId": "i-2"}]}]},
        ]

        instances = Ec2Provider(session=session).tagged_instances("eu-west-1")

        assert [i["InstanceId"] for i in instances] == ["i-1", "i-2"]
        filters = paginator.paginate.call_args[1]["Filters"]
        assert {"Name": "tag:VpnTunnel", "Values": ["OnDemand"]} in filters

    def test_delete_group_requires_identifier(self, session):
        with pytest.raises(ValueError):
            Ec2Provider(session=session).delete_security_group("eu-west-1")


def test_is_not_found(make_client_error):
    assert is_not_found(make_client_error("InvalidGroup.NotFound"))
    assert not is_not_found(make_client_error("DependencyViolation"))
