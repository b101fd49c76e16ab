"""目标发现模块测试。

使用假的查询命令执行器，不依赖 aws / gcloud / kubectl。
"""

from __future__ import annotations

import io
import json
from collections.abc import Callable, Sequence
from dataclasses import replace

import pytest

from g_ssh_cmd.config import Config
from g_ssh_cmd.discovery import (
    AsgDiscovery,
    MigDiscovery,
    PodDiscovery,
    TargetKind,
    create_discovery,
    match_pattern,
)
from g_ssh_cmd.discovery.mig import url_segment
from g_ssh_cmd.discovery.pods import to_selector
from g_ssh_cmd.errors import DiscoveryError
from g_ssh_cmd.runtime.multiplexer import LogSink

from conftest import records

GCE = "https://www.googleapis.com/compute/v1/projects/demo"


class FakeRunner:
    """记录调用并按 argv 返回预设响应的查询执行器。"""

    def __init__(self, responder: Callable[[list[str]], tuple[object, int]]) -> None:
        self.responder = responder
        self.calls: list[list[str]] = []

    async def __call__(self, argv: Sequence[str]) -> tuple[bytes, int]:
        argv = list(argv)
        self.calls.append(argv)
        payload, code = self.responder(argv)
        if isinstance(payload, (dict, list)):
            payload = json.dumps(payload)
        return str(payload).encode(), code


def ok(payload: object) -> tuple[object, int]:
    return payload, 0


# =============================================================================
# 过滤匹配
# =============================================================================


class TestMatchPattern:
    """过滤模式匹配测试。"""

    @pytest.mark.parametrize(
        "name,pattern",
        [
            ("web-1", "web-1"),
            ("web-1", "web-*"),
            ("web-1", "web-?"),
            ("webserver", "server"),
            ("i-0abc123", "abc"),
            ("anything", ""),
            ("anything", None),
        ],
    )
    def test_matches(self, name: str, pattern: str | None):
        assert match_pattern(name, pattern) is True

    @pytest.mark.parametrize(
        "name,pattern",
        [
            ("web-1", "db-*"),
            ("web-10", "web-?"),
            ("web-1", "WEB-1"),
            ("web-1", "db"),
        ],
    )
    def test_no_match(self, name: str, pattern: str):
        assert match_pattern(name, pattern) is False

    def test_wildcard_disables_substring(self):
        """含通配符的模式不做子串匹配。"""
        assert match_pattern("my-web-1", "web-*") is False


# =============================================================================
# AWS ASG
# =============================================================================


def asg_response(*instance_ids: str) -> dict:
    return {
        "AutoScalingGroups": [
            {
                "AutoScalingGroupName": "web-asg",
                "Instances": [{"InstanceId": i, "LifecycleState": "InService"} for i in instance_ids],
            }
        ]
    }


def instances_response(instance_id: str, address: str | None) -> dict:
    instance: dict = {"InstanceId": instance_id, "State": {"Name": "running"}}
    if address:
        instance["PublicIpAddress"] = address
    return {"Reservations": [{"Instances": [instance]}]}


class TestAsgDiscovery:
    """AWS Auto Scaling Group 发现器测试。"""

    @pytest.mark.asyncio
    async def test_resolves_instances(self, config: Config):
        addresses = {"i-1": "10.0.0.1", "i-2": "10.0.0.2"}

        def responder(argv: list[str]):
            if "describe-auto-scaling-groups" in argv:
                return ok(asg_response("i-1", "i-2"))
            instance_id = argv[argv.index("--instance-ids") + 1]
            return ok(instances_response(instance_id, addresses[instance_id]))

        runner = FakeRunner(responder)
        specs = await AsgDiscovery(config, runner=runner).discover("web-asg", "uptime")

        by_id = {spec.identifier: spec for spec in specs}
        assert set(by_id) == {"i-1", "i-2"}
        assert by_id["i-1"].argv == [
            "ssh",
            "-o",
            "StrictHostKeyChecking=accept-new",
            "ec2-user@10.0.0.1",
            "-t",
            "uptime",
        ]
        assert runner.calls[0] == [
            "aws",
            "autoscaling",
            "describe-auto-scaling-groups",
            "--auto-scaling-group-name",
            "web-asg",
        ]

    @pytest.mark.asyncio
    async def test_key_user_and_profile(self, config: Config):
        config = replace(config, ssh_key="/k.pem", ssh_user="ubuntu", aws_profile="prod")

        def responder(argv: list[str]):
            if "describe-auto-scaling-groups" in argv:
                return ok(asg_response("i-1"))
            return ok(instances_response("i-1", "1.2.3.4"))

        runner = FakeRunner(responder)
        [spec] = await AsgDiscovery(config, runner=runner).discover("web-asg", "df -h")

        assert spec.argv == [
            "ssh",
            "-i",
            "/k.pem",
            "-o",
            "StrictHostKeyChecking=accept-new",
            "ubuntu@1.2.3.4",
            "-t",
            "df -h",
        ]
        assert all(call[-2:] == ["--profile", "prod"] for call in runner.calls)

    @pytest.mark.asyncio
    async def test_instance_without_public_ip_skipped(self, config: Config, sink: LogSink, output: io.StringIO):
        def responder(argv: list[str]):
            if "describe-auto-scaling-groups" in argv:
                return ok(asg_response("i-1", "i-2"))
            instance_id = argv[argv.index("--instance-ids") + 1]
            return ok(instances_response(instance_id, "10.0.0.1" if instance_id == "i-1" else None))

        specs = await AsgDiscovery(config, runner=FakeRunner(responder), sink=sink).discover("g", "uptime")

        assert [spec.identifier for spec in specs] == ["i-1"]
        assert "[error] i-2 --> no public IP address, skipped" in records(output)

    @pytest.mark.asyncio
    async def test_instance_lookup_failure_isolated(self, config: Config, sink: LogSink, output: io.StringIO):
        """单个实例查询失败不影响其他实例。"""
        def responder(argv: list[str]):
            if "describe-auto-scaling-groups" in argv:
                return ok(asg_response("i-1", "i-2"))
            instance_id = argv[argv.index("--instance-ids") + 1]
            if instance_id == "i-2":
                return "An error occurred (Throttling)", 255
            return ok(instances_response(instance_id, "10.0.0.1"))

        specs = await AsgDiscovery(config, runner=FakeRunner(responder), sink=sink).discover("g", "uptime")

        assert [spec.identifier for spec in specs] == ["i-1"]
        errors = [line for line in records(output) if line.startswith("[error]")]
        assert len(errors) == 1
        assert errors[0].startswith("[error] i-2: aws exited with status 255")
        assert "Throttling" in errors[0]

    @pytest.mark.asyncio
    async def test_group_lookup_failure(self, config: Config):
        runner = FakeRunner(lambda argv: ("Unable to locate credentials", 255))

        with pytest.raises(DiscoveryError) as exc_info:
            await AsgDiscovery(config, runner=runner).discover("web-asg", "uptime")

        assert exc_info.value.group == "web-asg"
        assert "Unable to locate credentials" in exc_info.value.output
        assert str(exc_info.value).endswith("--> Unable to locate credentials")

    @pytest.mark.asyncio
    async def test_empty_group(self, config: Config):
        runner = FakeRunner(lambda argv: ok({"AutoScalingGroups": []}))
        assert await AsgDiscovery(config, runner=runner).discover("none", "uptime") == []
        assert len(runner.calls) == 1

    @pytest.mark.asyncio
    async def test_malformed_response(self, config: Config):
        runner = FakeRunner(lambda argv: ("not json", 0))

        with pytest.raises(DiscoveryError, match="malformed response"):
            await AsgDiscovery(config, runner=runner).discover("web-asg", "uptime")

    @pytest.mark.asyncio
    async def test_missing_cli(self, config: Config):
        """查询命令无法启动。"""
        async def runner(argv):
            raise FileNotFoundError(2, "No such file or directory", "aws")

        with pytest.raises(DiscoveryError, match="failed to run aws"):
            await AsgDiscovery(config, runner=runner).discover("web-asg", "uptime")


# =============================================================================
# GCP MIG
# =============================================================================


def mig_responder(groups: list[dict], instances: list[str]):
    def responder(argv: list[str]):
        if "list" in argv:
            return ok(groups)
        if "list-instances" in argv:
            return ok([{"instance": url, "instanceStatus": "RUNNING"} for url in instances])
        return "unexpected", 1

    return responder


class TestMigDiscovery:
    """GCP Managed Instance Group 发现器测试。"""

    @pytest.mark.asyncio
    async def test_zonal_group(self, config: Config):
        runner = FakeRunner(
            mig_responder(
                [
                    {"name": "other", "zone": f"{GCE}/zones/us-east1-b"},
                    {"name": "web-mig", "zone": f"{GCE}/zones/europe-west1-b"},
                ],
                [
                    f"{GCE}/zones/europe-west1-b/instances/web-mig-abcd",
                    f"{GCE}/zones/europe-west1-b/instances/web-mig-efgh",
                ],
            )
        )

        specs = await MigDiscovery(config, runner=runner).discover("web-mig", "uptime")

        assert [spec.identifier for spec in specs] == ["web-mig-abcd", "web-mig-efgh"]
        assert specs[0].argv == [
            "gcloud",
            "compute",
            "ssh",
            "--zone",
            "europe-west1-b",
            "web-mig-abcd",
            "--quiet",
            "--command=uptime",
            "--",
            "-t",
        ]
        assert runner.calls[1][-1] == "--zone=europe-west1-b"
        assert not any(arg.startswith("--region") for arg in runner.calls[1])

    @pytest.mark.asyncio
    async def test_regional_group(self, config: Config):
        """区域组用 --region 查询，每个实例用自己的 zone 连接。"""
        runner = FakeRunner(
            mig_responder(
                [{"name": "web-mig", "region": f"{GCE}/regions/europe-west1"}],
                [
                    f"{GCE}/zones/europe-west1-b/instances/a",
                    f"{GCE}/zones/europe-west1-c/instances/b",
                ],
            )
        )

        specs = await MigDiscovery(config, runner=runner).discover("web-mig", "uptime")

        assert runner.calls[1][-1] == "--region=europe-west1"
        assert [spec.args[3] for spec in specs] == ["europe-west1-b", "europe-west1-c"]

    @pytest.mark.asyncio
    async def test_project(self, config: Config):
        config = replace(config, gcp_project="demo")
        runner = FakeRunner(
            mig_responder(
                [{"name": "web-mig", "zone": f"{GCE}/zones/z1"}],
                [f"{GCE}/zones/z1/instances/a"],
            )
        )

        [spec] = await MigDiscovery(config, runner=runner).discover("web-mig", "uptime")

        assert "--project=demo" in spec.args
        assert all("--project=demo" in call for call in runner.calls)

    @pytest.mark.asyncio
    async def test_group_not_found(self, config: Config):
        runner = FakeRunner(mig_responder([{"name": "other", "zone": f"{GCE}/zones/z1"}], []))

        with pytest.raises(DiscoveryError, match="web-mig: not found"):
            await MigDiscovery(config, runner=runner).discover("web-mig", "uptime")

        assert len(runner.calls) == 1

    @pytest.mark.asyncio
    async def test_unrecognized_instance_url_skipped(self, config: Config):
        runner = FakeRunner(
            mig_responder(
                [{"name": "web-mig", "zone": f"{GCE}/zones/z1"}],
                ["garbage", f"{GCE}/zones/z1/instances/a"],
            )
        )

        specs = await MigDiscovery(config, runner=runner).discover("web-mig", "uptime")

        assert [spec.identifier for spec in specs] == ["a"]

    def test_url_segment(self):
        url = f"{GCE}/zones/z1/instances/vm-1"
        assert url_segment(url, 8) == "z1"
        assert url_segment(url, 10) == "vm-1"
        assert url_segment("short/url", 8) is None


# =============================================================================
# Kubernetes Pods
# =============================================================================


def pod(name: str, phase: str = "Running") -> dict:
    return {"metadata": {"name": name, "namespace": "default"}, "status": {"phase": phase}}


class TestPodDiscovery:
    """Kubernetes Pod 发现器测试。"""

    @pytest.mark.asyncio
    async def test_running_pods_only(self, config: Config):
        runner = FakeRunner(
            lambda argv: ok({"items": [pod("web-1"), pod("web-2", "Pending"), pod("web-3")]})
        )

        specs = await PodDiscovery(config, runner=runner).discover("web", "uptime")

        assert [spec.identifier for spec in specs] == ["web-1", "web-3"]
        assert specs[0].argv == ["kubectl", "exec", "web-1", "--", "sh", "-c", "uptime"]
        assert runner.calls[0] == ["kubectl", "get", "pods", "-l", "app=web", "-o", "json"]

    @pytest.mark.asyncio
    async def test_namespace(self, config: Config):
        config = replace(config, namespace="prod")
        runner = FakeRunner(lambda argv: ok({"items": [pod("api-1")]}))

        [spec] = await PodDiscovery(config, runner=runner).discover("tier=api", "ls")

        assert spec.argv == ["kubectl", "exec", "-n", "prod", "api-1", "--", "sh", "-c", "ls"]
        assert runner.calls[0] == ["kubectl", "get", "pods", "-n", "prod", "-l", "tier=api", "-o", "json"]

    @pytest.mark.asyncio
    async def test_lookup_failure(self, config: Config):
        runner = FakeRunner(lambda argv: ("error: You must be logged in", 1))

        with pytest.raises(DiscoveryError, match="kubectl exited with status 1"):
            await PodDiscovery(config, runner=runner).discover("web", "uptime")

    def test_to_selector(self):
        assert to_selector("web") == "app=web"
        assert to_selector("app=web,tier=front") == "app=web,tier=front"


# =============================================================================
# 过滤与工厂
# =============================================================================


class TestFilter:
    """过滤模式对所有提供方生效。"""

    @pytest.mark.asyncio
    async def test_pattern_applied(self, config: Config):
        runner = FakeRunner(
            lambda argv: ok({"items": [pod("web-1"), pod("web-2"), pod("db-1")]})
        )

        specs = await PodDiscovery(config, runner=runner).discover("all", "uptime", pattern="web-*")

        assert [spec.identifier for spec in specs] == ["web-1", "web-2"]

    @pytest.mark.asyncio
    async def test_nothing_matches(self, config: Config):
        runner = FakeRunner(lambda argv: ok({"items": [pod("web-1")]}))
        assert await PodDiscovery(config, runner=runner).discover("all", "uptime", pattern="db-*") == []


class TestCreateDiscovery:
    """工厂函数测试。"""

    @pytest.mark.parametrize(
        "kind,cls",
        [
            (TargetKind.ASG, AsgDiscovery),
            ("mig", MigDiscovery),
            ("POD", PodDiscovery),
        ],
    )
    def test_kinds(self, config: Config, kind, cls):
        discovery = create_discovery(kind, config)
        assert isinstance(discovery, cls)
        assert discovery.config is config

    def test_unknown_kind(self, config: Config):
        with pytest.raises(ValueError):
            create_discovery("vmss", config)
