"""AWS Auto Scaling Group 发现器。

1. aws autoscaling describe-auto-scaling-groups 得到实例 ID 列表
2. 并发执行 aws ec2 describe-instances 得到每个实例的公网 IP
3. 每个实例生成 ssh <user>@<ip> -t <command>
"""

from __future__ import annotations

import logging

import anyio

from ..errors import DiscoveryError
from ..runtime.process_runner import CommandSpec
from .base import TargetDiscovery
from .models import DescribeAutoScalingGroupsResponse, DescribeInstancesResponse

__all__ = ["AsgDiscovery"]

logger = logging.getLogger(__name__)


class AsgDiscovery(TargetDiscovery):
    """AWS Auto Scaling Group 发现器。"""

    kind = "asg"

    def _aws(self, *args: str) -> list[str]:
        argv = ["aws", *args]
        if self.config.aws_profile:
            argv.extend(["--profile", self.config.aws_profile])
        return argv

    def build_command(self, instance_id: str, address: str, command: str) -> CommandSpec:
        """构造到单个实例的 ssh 命令。"""
        args: list[str] = []
        if self.config.ssh_key:
            args.extend(["-i", self.config.ssh_key])
        args.extend([
            "-o",
            "StrictHostKeyChecking=accept-new",
            f"{self.config.ssh_user}@{address}",
            "-t",
            command,
        ])
        return CommandSpec(identifier=instance_id, executable="ssh", args=tuple(args))

    async def _resolve(self, group: str, command: str) -> list[CommandSpec]:
        output = await self._lookup(
            group,
            self._aws("autoscaling", "describe-auto-scaling-groups", "--auto-scaling-group-name", group),
        )
        response = self._parse(group, output, DescribeAutoScalingGroupsResponse)

        instance_ids = [
            instance.instance_id
            for asg in response.auto_scaling_groups
            for instance in asg.instances
            if instance.instance_id
        ]
        logger.debug(f"ASG {group}: {len(instance_ids)} instance(s)")

        specs: list[CommandSpec] = []

        async def describe(instance_id: str) -> None:
            try:
                specs.extend(await self._describe_instance(instance_id, command))
            except DiscoveryError as e:
                # 单个实例查询失败不影响其他实例
                self._report_error(e)

        async with anyio.create_task_group() as tg:
            for instance_id in instance_ids:
                tg.start_soon(describe, instance_id, name=f"describe:{instance_id}")

        return specs

    async def _describe_instance(self, instance_id: str, command: str) -> list[CommandSpec]:
        output = await self._lookup(
            instance_id,
            self._aws("ec2", "describe-instances", "--instance-ids", instance_id),
        )
        response = self._parse(instance_id, output, DescribeInstancesResponse)

        specs = []
        for reservation in response.reservations:
            for instance in reservation.instances:
                if not instance.public_ip_address:
                    self._report_error(instance_id, "--> no public IP address, skipped")
                    continue
                specs.append(self.build_command(instance_id, instance.public_ip_address, command))
        return specs
