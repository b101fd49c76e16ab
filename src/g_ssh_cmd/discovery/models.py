"""发现查询响应模型。

只定义需要的字段，使用 extra='ignore' 忽略其余字段。
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    # AWS
    "AwsInstance",
    "AutoScalingGroup",
    "DescribeAutoScalingGroupsResponse",
    "Reservation",
    "DescribeInstancesResponse",
    # GCP
    "ManagedInstanceGroup",
    "ManagedInstance",
    # Kubernetes
    "Pod",
    "PodList",
]


class _Model(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# AWS: aws autoscaling describe-auto-scaling-groups / aws ec2 describe-instances


class AwsInstance(_Model):
    instance_id: str = Field(default="", alias="InstanceId")
    public_ip_address: str | None = Field(default=None, alias="PublicIpAddress")


class AutoScalingGroup(_Model):
    instances: list[AwsInstance] = Field(default_factory=list, alias="Instances")


class DescribeAutoScalingGroupsResponse(_Model):
    auto_scaling_groups: list[AutoScalingGroup] = Field(
        default_factory=list, alias="AutoScalingGroups"
    )


class Reservation(_Model):
    instances: list[AwsInstance] = Field(default_factory=list, alias="Instances")


class DescribeInstancesResponse(_Model):
    reservations: list[Reservation] = Field(default_factory=list, alias="Reservations")


# GCP: gcloud compute instance-groups managed list / list-instances


class ManagedInstanceGroup(_Model):
    """托管实例组。

    region/zone 是完整的资源 URL，例如
    https://www.googleapis.com/compute/v1/projects/p/zones/z
    """

    name: str = ""
    region: str = ""
    zone: str = ""


class ManagedInstance(_Model):
    """托管实例组成员。

    instance 是完整的资源 URL，例如
    https://www.googleapis.com/compute/v1/projects/p/zones/z/instances/name
    """

    instance: str = ""


# Kubernetes: kubectl get pods -o json


class PodMetadata(_Model):
    name: str = ""
    namespace: str = ""


class PodStatus(_Model):
    phase: str = ""


class Pod(_Model):
    metadata: PodMetadata = Field(default_factory=PodMetadata)
    status: PodStatus = Field(default_factory=PodStatus)


class PodList(_Model):
    items: list[Pod] = Field(default_factory=list)
