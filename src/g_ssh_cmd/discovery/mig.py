"""GCP Managed Instance Group 发现器。

1. gcloud compute instance-groups managed list 找到组，得到 region/zone
2. gcloud compute instance-groups managed list-instances 得到实例 URL
3. 每个实例生成 gcloud compute ssh --zone <zone> <name> --command=<command> -- -t
"""

from __future__ import annotations

import logging

from ..errors import DiscoveryError
from ..runtime.process_runner import CommandSpec
from .base import TargetDiscovery
from .models import ManagedInstance, ManagedInstanceGroup

__all__ = ["MigDiscovery", "url_segment"]

logger = logging.getLogger(__name__)

# https://www.googleapis.com/compute/v1/projects/<p>/zones/<z>
#   split("/") -> index 8 is the region or zone name
LOCATION_INDEX = 8
# https://www.googleapis.com/compute/v1/projects/<p>/zones/<z>/instances/<name>
#   split("/") -> index 8 is the zone, index 10 the instance name
INSTANCE_NAME_INDEX = 10


def url_segment(url: str, index: int) -> str | None:
    """返回资源 URL 按 "/" 切分后的第 index 段，不存在时返回 None。"""
    parts = url.split("/")
    if len(parts) <= index:
        return None
    return parts[index]


class MigDiscovery(TargetDiscovery):
    """GCP Managed Instance Group 发现器。"""

    kind = "mig"

    def _project_args(self) -> list[str]:
        if self.config.gcp_project:
            return [f"--project={self.config.gcp_project}"]
        return []

    def build_command(self, name: str, zone: str, command: str) -> CommandSpec:
        """构造到单个实例的 gcloud compute ssh 命令。"""
        args = ["compute", "ssh", "--zone", zone, name, "--quiet"]
        args.extend(self._project_args())
        args.extend([f"--command={command}", "--", "-t"])
        return CommandSpec(identifier=name, executable="gcloud", args=tuple(args))

    async def _locate(self, group: str) -> tuple[str, str]:
        """查找组并返回 (region, zone)，未找到时抛出 DiscoveryError。"""
        output = await self._lookup(
            group,
            [
                "gcloud",
                "compute",
                "instance-groups",
                "managed",
                "list",
                "--format=json",
                *self._project_args(),
            ],
        )
        groups = self._parse(group, output, list[ManagedInstanceGroup])

        region = zone = ""
        found = False
        for mig in groups:
            if mig.name != group:
                continue
            found = True
            if mig.region and not region:
                region = url_segment(mig.region, LOCATION_INDEX) or ""
            if mig.zone and not zone:
                zone = url_segment(mig.zone, LOCATION_INDEX) or ""

        if not found:
            raise DiscoveryError(group, "not found")
        return region, zone

    async def _resolve(self, group: str, command: str) -> list[CommandSpec]:
        region, zone = await self._locate(group)
        logger.debug(f"MIG {group}: region={region or '-'} zone={zone or '-'}")

        argv = [
            "gcloud",
            "compute",
            "instance-groups",
            "managed",
            "list-instances",
            group,
            "--format=json",
            *self._project_args(),
        ]
        if region:
            argv.append(f"--region={region}")
        if zone:
            argv.append(f"--zone={zone}")

        output = await self._lookup(group, argv)
        instances = self._parse(group, output, list[ManagedInstance])

        specs = []
        for instance in instances:
            name = url_segment(instance.instance, INSTANCE_NAME_INDEX)
            instance_zone = url_segment(instance.instance, LOCATION_INDEX)
            if not name or not instance_zone:
                logger.debug(f"Skipping unrecognized instance URL: {instance.instance!r}")
                continue
            specs.append(self.build_command(name, instance_zone, command))
        return specs
