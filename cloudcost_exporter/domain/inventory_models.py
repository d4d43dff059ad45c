"""
Domain models for cloud resource inventories.
Each record carries just enough to be joined against a pricing map.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional


# Tags that name the Kubernetes cluster an EC2 instance belongs to, in priority order
CLUSTER_TAGS: List[str] = ["cluster", "eks:cluster-name", "aws:eks:cluster-name"]
PV_NAME_TAG = "kubernetes.io/created-for/pv/name"
GKE_CLUSTER_LABEL = "goog-k8s-cluster-name"

SPOT_LIFECYCLE = "spot"


def _tag_map(tags: Optional[List[Dict[str, str]]]) -> Dict[str, str]:
    """Flatten an AWS ``[{'Key': .., 'Value': ..}]`` tag list."""
    return {tag.get("Key", ""): tag.get("Value", "") for tag in tags or []}


@dataclass(frozen=True)
class ComputeInstance:
    """An EC2 instance as returned by DescribeInstances."""
    instance_id: str
    private_dns_name: str
    availability_zone: str
    instance_type: str
    lifecycle: str = ""
    cluster_name: str = ""

    @property
    def is_spot(self) -> bool:
        return self.lifecycle == SPOT_LIFECYCLE

    @classmethod
    def from_api(cls, instance: Dict) -> "ComputeInstance":
        """Build from one DescribeInstances ``Instances`` item."""
        tags = _tag_map(instance.get("Tags"))
        cluster_name = ""
        for tag in CLUSTER_TAGS:
            if tags.get(tag):
                cluster_name = tags[tag]
                break
        return cls(
            instance_id=instance.get("InstanceId", ""),
            private_dns_name=instance.get("PrivateDnsName") or "",
            availability_zone=(instance.get("Placement") or {}).get("AvailabilityZone") or "",
            instance_type=instance.get("InstanceType", ""),
            lifecycle=instance.get("InstanceLifecycle") or "",
            cluster_name=cluster_name,
        )


@dataclass(frozen=True)
class PersistentVolume:
    """An EBS volume as returned by DescribeVolumes."""
    volume_id: str
    availability_zone: str
    volume_type: str
    size_gib: int
    state: str
    pv_name: str = ""

    @classmethod
    def from_api(cls, volume: Dict) -> "PersistentVolume":
        """Build from one DescribeVolumes ``Volumes`` item."""
        tags = _tag_map(volume.get("Tags"))
        return cls(
            volume_id=volume.get("VolumeId", ""),
            availability_zone=volume.get("AvailabilityZone", ""),
            volume_type=volume.get("VolumeType", ""),
            size_gib=int(volume.get("Size") or 0),
            state=volume.get("State", ""),
            pv_name=tags.get(PV_NAME_TAG, ""),
        )


def _last_segment(url: str) -> str:
    return url.rstrip("/").rsplit("/", 1)[-1]


def region_from_zone(zone: str) -> str:
    """``us-central1-a`` -> ``us-central1``."""
    if "-" not in zone:
        return zone
    return zone.rsplit("-", 1)[0]


@dataclass(frozen=True)
class MachineSpec:
    """A GCE instance reduced to what pricing needs."""
    instance: str
    zone: str
    region: str
    machine_type: str
    family: str
    project: str
    spot_instance: bool = False
    labels: Dict[str, str] = field(default_factory=dict)

    @property
    def price_tier(self) -> str:
        return "spot" if self.spot_instance else "ondemand"

    @property
    def cluster_name(self) -> str:
        return self.labels.get(GKE_CLUSTER_LABEL, "")

    @classmethod
    def from_api(cls, instance: Dict, project: str) -> "MachineSpec":
        """
        Build from a Compute Engine instance resource.

        Args:
            instance: Instance JSON from ``aggregated/instances``
            project: Project the instance was listed from

        Returns:
            MachineSpec with zone, region and family derived from URLs
        """
        zone = _last_segment(instance.get("zone", ""))
        machine_type = _last_segment(instance.get("machineType", ""))
        scheduling = instance.get("scheduling") or {}
        return cls(
            instance=instance.get("name", ""),
            zone=zone,
            region=region_from_zone(zone),
            machine_type=machine_type,
            family=machine_type.split("-", 1)[0].lower(),
            project=project,
            spot_instance=scheduling.get("provisioningModel") == "SPOT",
            labels=dict(instance.get("labels") or {}),
        )


# Compute Engine disk type -> billing storage class
GCP_DISK_STORAGE_CLASSES: Dict[str, str] = {
    "pd-standard": "pd-standard",
    "pd-ssd": "pd-ssd",
    "pd-balanced": "pd-balanced",
    "pd-extreme": "pd-extreme",
}


@dataclass(frozen=True)
class GcpDisk:
    """A GCE persistent disk."""
    name: str
    zone: str
    region: str
    disk_type: str
    size_gib: int
    status: str
    project: str
    labels: Dict[str, str] = field(default_factory=dict)

    @property
    def storage_class(self) -> str:
        return GCP_DISK_STORAGE_CLASSES.get(self.disk_type, self.disk_type)

    @property
    def location(self) -> str:
        return self.zone or self.region

    @classmethod
    def from_api(cls, disk: Dict, project: str) -> "GcpDisk":
        """Build from a Compute Engine disk resource (zonal or regional)."""
        zone = _last_segment(disk["zone"]) if disk.get("zone") else ""
        region = _last_segment(disk["region"]) if disk.get("region") else region_from_zone(zone)
        return cls(
            name=disk.get("name", ""),
            zone=zone,
            region=region,
            disk_type=_last_segment(disk.get("type", "")),
            size_gib=int(disk.get("sizeGb") or 0),
            status=disk.get("status", ""),
            project=project,
            labels=dict(disk.get("labels") or {}),
        )


@dataclass(frozen=True)
class LoadBalancer:
    """An Elastic Load Balancing v2 load balancer."""
    name: str
    arn: str
    lb_type: str  # "application", "network" or "gateway"
    scheme: str
    region: str

    @classmethod
    def from_api(cls, load_balancer: Dict, region: str) -> "LoadBalancer":
        """Build from one DescribeLoadBalancers ``LoadBalancers`` item."""
        return cls(
            name=load_balancer.get("LoadBalancerName", ""),
            arn=load_balancer.get("LoadBalancerArn", ""),
            lb_type=load_balancer.get("Type", ""),
            scheme=load_balancer.get("Scheme", ""),
            region=region,
        )


@dataclass(frozen=True)
class ForwardingRule:
    """A Compute Engine forwarding rule, the billed unit of a GCP load balancer."""
    name: str
    region: str
    project: str
    ip_address: str = ""
    load_balancing_scheme: str = ""

    @classmethod
    def from_api(cls, rule: Dict, project: str) -> "ForwardingRule":
        # Global rules carry no region URL
        region = _last_segment(rule["region"]) if rule.get("region") else "global"
        return cls(
            name=rule.get("name", ""),
            region=region,
            project=project,
            ip_address=rule.get("IPAddress", ""),
            load_balancing_scheme=rule.get("loadBalancingScheme", ""),
        )
