"""etcd membership client."""

from etcd_operator.membership.client import EtcdMembershipClient, MemberInfo, MembershipClient

__all__ = ["EtcdMembershipClient", "MemberInfo", "MembershipClient"]
